"""
Booking lifecycle.

    pending --approve--> approved      car: pending -> rented
    pending --reject---> rejected      car: pending -> available

Every car status write goes through cars.set_status with the status the car
is expected to be in, so two bookings can never hold the same car.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import cars
from database import create_document, find_by_id, get_documents, now_utc, to_object_id
from errors import NotFound, ValidationFailure
from schemas import AgentApprovalDetails, BankDetails, Booking

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "approved")
PAYMENT_STATUSES = ("unpaid", "paid")


def _require(**fields):
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationFailure(f"Missing required fields: {', '.join(missing)}")


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _join_cars(db: Database, bookings: List[dict]) -> List[dict]:
    ids = {to_object_id(b.get("car_id")) for b in bookings}
    ids.discard(None)
    by_id = {str(c["_id"]): c for c in db["car"].find({"_id": {"$in": list(ids)}})} if ids else {}
    return [{**b, "car": by_id.get(b.get("car_id"))} for b in bookings]


def get_booking(db: Database, booking_id: str) -> dict:
    booking = find_by_id(db, "booking", booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


def create_booking(
    db: Database,
    car_id: str,
    customer_id: str,
    agent_id: str,
    date_from: datetime,
    date_to: datetime,
    location: str,
    price: float,
    payment_method: Optional[str] = None,
    payment_number: Optional[str] = None,
) -> dict:
    _require(car=car_id, customer=customer_id, agent=agent_id, dateFrom=date_from,
             dateTo=date_to, location=location, price=price)
    date_from, date_to = as_utc(date_from), as_utc(date_to)
    if date_to < date_from:
        raise ValidationFailure("dateTo must not be before dateFrom")
    if price < 0:
        raise ValidationFailure("price must not be negative")

    car = cars.get_car(db, car_id)
    if car.get("agent_id") != agent_id:
        raise ValidationFailure("Car does not belong to this agent")

    if cars.set_status(db, car_id, "pending", expected=["available"]) is None:
        raise ValidationFailure("Car is not available for booking")

    booking = Booking(
        car_id=str(car["_id"]),
        customer_id=customer_id,
        agent_id=agent_id,
        date_from=date_from,
        date_to=date_to,
        location=location,
        price=price,
        payment_method=payment_method,
        payment_number=payment_number,
    )
    try:
        booking_id = create_document(db, "booking", booking)
    except Exception:
        cars.set_status(db, car_id, "available", expected=["pending"])
        raise
    logger.info("Booking %s created for car %s by customer %s", booking_id, car_id, customer_id)
    return find_by_id(db, "booking", booking_id)


def approve_booking(db: Database, booking_id: str) -> dict:
    oid = to_object_id(booking_id)
    booking = db["booking"].find_one_and_update(
        {"_id": oid, "status": "pending"},
        {"$set": {"status": "approved", "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if booking is None:
        current = get_booking(db, booking_id)
        if current["status"] == "approved":
            return current
        raise ValidationFailure(f"Cannot approve a {current['status']} booking")

    if cars.set_status(db, booking["car_id"], "rented", expected=["pending"]) is None:
        db["booking"].update_one(
            {"_id": booking["_id"], "status": "approved"},
            {"$set": {"status": "pending", "updated_at": now_utc()}},
        )
        logger.warning("Approval of booking %s rolled back, car %s was not pending", booking_id, booking["car_id"])
        raise ValidationFailure("Car is no longer held for this booking")
    logger.info("Booking %s approved", booking_id)
    return booking


def _has_other_active_booking(db: Database, car_id: str, booking_id) -> bool:
    return db["booking"].count_documents(
        {"car_id": car_id, "_id": {"$ne": booking_id}, "status": {"$in": list(ACTIVE_STATUSES)}}
    ) > 0


def reject_booking(db: Database, booking_id: str) -> dict:
    current = get_booking(db, booking_id)
    if current["status"] == "approved":
        raise ValidationFailure("Cannot reject an approved booking")

    booking = db["booking"].find_one_and_update(
        {"_id": current["_id"], "status": {"$in": ["pending", "rejected"]}},
        {"$set": {"status": "rejected", "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if booking is None:
        raise ValidationFailure("Booking changed while rejecting, try again")

    car_id = booking["car_id"]
    if current["status"] == "pending":
        cars.set_status(db, car_id, "available", expected=["pending"])
    elif not _has_other_active_booking(db, car_id, booking["_id"]):
        # Re-rejection: free the car unless someone else holds it now.
        cars.set_status(db, car_id, "available")
    logger.info("Booking %s rejected", booking_id)
    return booking


def approve_with_bank_details(db: Database, booking_id: str, bank_details: BankDetails) -> dict:
    booking = get_booking(db, booking_id)
    if booking["status"] != "approved":
        raise ValidationFailure("Bank details can only be added to an approved booking")

    details = AgentApprovalDetails(approved_at=now_utc(), **bank_details.model_dump())
    updated = db["booking"].find_one_and_update(
        {"_id": booking["_id"]},
        {"$set": {"agent_approval_details": details.model_dump(), "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    result = db["payment"].update_many(
        {"booking_id": str(booking["_id"])},
        {"$set": {"agent_bank_details": bank_details.model_dump(), "updated_at": now_utc()}},
    )
    logger.info("Bank details recorded for booking %s (%d payment(s) updated)",
                booking_id, result.modified_count)
    return updated


def update_payment_status(db: Database, booking_id: str, payment_status: str) -> dict:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationFailure(f"Invalid payment status: {payment_status}")
    oid = to_object_id(booking_id)
    booking = db["booking"].find_one_and_update(
        {"_id": oid},
        {"$set": {"payment_status": payment_status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def delete_booking(db: Database, booking_id: str) -> dict:
    oid = to_object_id(booking_id)
    booking = db["booking"].find_one_and_delete({"_id": oid}) if oid else None
    if booking is None:
        raise NotFound("Booking not found")

    # A rejected booking already released its car. For the others only
    # release the car if it is still in the state this booking put it in.
    held = {"pending": "pending", "approved": "rented"}.get(booking["status"])
    if held:
        cars.set_status(db, booking["car_id"], "available", expected=[held])
    logger.info("Booking %s deleted (was %s)", booking_id, booking["status"])
    return booking


def list_agent_bookings(db: Database, agent_id: str) -> List[dict]:
    return _join_cars(db, get_documents(db, "booking", {"agent_id": agent_id}, newest_first=True))


def list_customer_bookings(db: Database, customer_id: str) -> List[dict]:
    return _join_cars(db, get_documents(db, "booking", {"customer_id": customer_id}, newest_first=True))


def list_all_bookings(db: Database) -> List[dict]:
    return _join_cars(db, get_documents(db, "booking", newest_first=True))


def get_booking_with_car(db: Database, booking_id: str) -> dict:
    return _join_cars(db, [get_booking(db, booking_id)])[0]
