"""
Car registry.

Cars are created and edited by agents. The `status` field is owned by the
booking flow and is only written through set_status().
"""

import logging
from typing import Iterable, List, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, find_by_id, get_documents, now_utc, to_object_id
from errors import NotFound, ValidationFailure
from schemas import Car, CarStatus, IMAGE_SLOTS

logger = logging.getLogger(__name__)

# Fields an agent may change after creation.
EDITABLE_FIELDS = set(Car.model_fields) - {"status", "agent_id"} - set(IMAGE_SLOTS)


def _validation_message(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def create_car(db: Database, payload: dict) -> dict:
    if not payload.get("agent_id"):
        raise ValidationFailure("Agent ID is required")
    if not payload.get("cover_image"):
        raise ValidationFailure("Cover image is required")
    data = {k: v for k, v in payload.items() if k != "status"}
    try:
        car = Car(**data)
    except ValidationError as e:
        raise ValidationFailure(_validation_message(e))
    car_id = create_document(db, "car", car)
    logger.info("Car %s added by agent %s", car_id, car.agent_id)
    return find_by_id(db, "car", car_id)


def list_cars(db: Database, agent_id: Optional[str] = None) -> List[dict]:
    filt = {"agent_id": agent_id} if agent_id else {}
    return get_documents(db, "car", filt, newest_first=True)


def get_car(db: Database, car_id: str) -> dict:
    car = find_by_id(db, "car", car_id)
    if not car:
        raise NotFound("Car not found")
    return car


def update_car(db: Database, car_id: str, payload: dict) -> dict:
    existing = get_car(db, car_id)
    updates = {k: v for k, v in payload.items() if k in EDITABLE_FIELDS and v is not None}
    # Only the image slots that were sent are replaced.
    for slot in IMAGE_SLOTS:
        if payload.get(slot):
            updates[slot] = payload[slot]

    merged = {**existing, **updates}
    merged.pop("_id", None)
    try:
        Car(**{k: v for k, v in merged.items() if k in Car.model_fields})
    except ValidationError as e:
        raise ValidationFailure(_validation_message(e))

    updates["updated_at"] = now_utc()
    return db["car"].find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )


def delete_car(db: Database, car_id: str) -> List[str]:
    """Delete a car and return the media references it held."""
    car = get_car(db, car_id)
    active = db["booking"].count_documents(
        {"car_id": str(car["_id"]), "status": {"$in": ["pending", "approved"]}}
    )
    if active:
        raise ValidationFailure("Car has active bookings and cannot be deleted")
    db["car"].delete_one({"_id": car["_id"]})
    media = [car[slot] for slot in IMAGE_SLOTS if car.get(slot)]
    logger.info("Car %s deleted, %d media references released", car_id, len(media))
    return media


def set_status(
    db: Database,
    car_id: str,
    status: CarStatus,
    expected: Optional[Iterable[CarStatus]] = None,
) -> Optional[dict]:
    """
    Write a car's status for a booking transition.

    With `expected`, the write only happens when the current status is one of
    those values, as a single conditional update. Returns the updated car, or
    None when the car is missing or the condition did not hold.
    """
    oid = to_object_id(car_id)
    if oid is None:
        return None
    filt = {"_id": oid}
    if expected is not None:
        filt["status"] = {"$in": list(expected)}
    car = db["car"].find_one_and_update(
        filt,
        {"$set": {"status": status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if car is not None:
        logger.info("Car %s status -> %s", car_id, status)
    return car
