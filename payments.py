"""
Payment ledger.

One payment document carries two money movements:

* the customer paying the platform for a booking (`status`, settled by
  confirm_payment once Stripe reports the intent succeeded), and
* the platform paying the agent out (`admin_payment_details`, present once
  the payout is recorded, either Stripe-verified or entered manually).
"""

import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import bookings
import chats
from database import create_document, find_by_id, get_documents, now_utc, to_object_id
from errors import ExternalServiceFailure, NotFound, PaymentNotCompleted, ValidationFailure
from schemas import AdminPaymentDetails, Payment

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


def _get_payment(db: Database, payment_id: str) -> dict:
    payment = find_by_id(db, "payment", payment_id)
    if not payment:
        raise NotFound("Payment not found")
    return payment


def _join_booking(db: Database, payment: dict) -> dict:
    return {**payment, "booking": find_by_id(db, "booking", payment.get("booking_id"))}


def _set_payment(db: Database, payment: dict, fields: dict, extra_filter: Optional[dict] = None) -> Optional[dict]:
    filt = {"_id": payment["_id"]}
    if extra_filter:
        filt.update(extra_filter)
    return db["payment"].find_one_and_update(
        filt,
        {"$set": {**fields, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )


# ------------------------ CUSTOMER -> PLATFORM ------------------------

def create_payment_intent(db: Database, processor, booking_id: str, amount: float, currency: str = "usd") -> dict:
    booking = bookings.get_booking(db, booking_id)
    if amount is None or amount <= 0:
        raise ValidationFailure("amount must be greater than zero")
    if booking["status"] == "rejected":
        raise ValidationFailure("Cannot pay for a rejected booking")
    if booking.get("payment_status") == "paid":
        raise ValidationFailure("Booking is already paid")

    payment = Payment(
        booking_id=str(booking["_id"]),
        customer_id=booking["customer_id"],
        agent_id=booking["agent_id"],
        amount=amount,
        currency=currency.lower(),
        payment_method=booking.get("payment_method") or "stripe",
    )
    payment_id = create_document(db, "payment", payment)
    stored = find_by_id(db, "payment", payment_id)

    try:
        intent = processor.create_intent(amount, payment.currency, {
            "bookingId": str(booking["_id"]),
            "paymentId": payment_id,
            "customerId": booking["customer_id"],
            "agentId": booking["agent_id"],
        })
    except ExternalServiceFailure:
        _set_payment(db, stored, {"status": "failed"})
        raise

    _set_payment(db, stored, {"stripe_payment_intent_id": intent.id})
    db["booking"].update_one(
        {"_id": booking["_id"]},
        {"$set": {"payment_id": payment_id, "updated_at": now_utc()}},
    )
    logger.info("Payment %s created for booking %s (intent %s)", payment_id, booking_id, intent.id)
    return {
        "clientSecret": intent.client_secret,
        "paymentIntentId": intent.id,
        "paymentId": payment_id,
    }


def _notify_agent(db: Database, payment: dict) -> None:
    chat = chats.create_or_get_chat(db, payment["customer_id"], payment["agent_id"])
    text = (
        f"Payment of {payment['amount']:.2f} {payment.get('currency', 'usd').upper()} has been "
        "successfully processed for your car booking. The booking is now confirmed and ready for pickup."
    )
    # Sent as the customer so it shows on their side of the thread.
    chats.post_notification(db, chat, payment["customer_id"], "customer", text)


def confirm_payment(db: Database, processor, payment_intent_id: str, payment_id: str) -> dict:
    payment = _get_payment(db, payment_id)
    stored_intent = payment.get("stripe_payment_intent_id")
    if not stored_intent:
        raise ValidationFailure("Payment has no processor intent to confirm")
    if stored_intent != payment_intent_id:
        raise ValidationFailure("Payment intent does not match this payment")
    if payment["status"] == "completed":
        return payment
    if payment["status"] in ("failed", "cancelled"):
        raise ValidationFailure(f"Cannot confirm a {payment['status']} payment")

    intent = processor.retrieve_intent(payment_intent_id)
    if intent.metadata.get("paymentId") != str(payment["_id"]) or intent.metadata.get("type") == "admin_to_agent":
        raise ValidationFailure("Payment intent belongs to a different payment")
    if intent.status != SUCCEEDED:
        logger.info("Payment %s not confirmed, intent status %s", payment_id, intent.status)
        raise PaymentNotCompleted()

    updated = _set_payment(
        db, payment,
        {"status": "completed", "stripe_payment_method_id": intent.payment_method},
        extra_filter={"status": {"$ne": "completed"}},
    )
    if updated is None:
        # Confirmed concurrently by another request.
        return _get_payment(db, payment_id)

    try:
        bookings.update_payment_status(db, payment["booking_id"], "paid")
    except NotFound:
        logger.warning("Payment %s completed but booking %s no longer exists", payment_id, payment["booking_id"])

    try:
        _notify_agent(db, updated)
    except Exception:
        logger.exception("Payment %s confirmed but agent notification failed", payment_id)

    logger.info("Payment %s completed", payment_id)
    return updated


# ------------------------ PLATFORM -> AGENT ------------------------

def create_admin_payment_intent(
    db: Database,
    processor,
    payment_id: str,
    amount: float,
    currency: str = "usd",
    agent_id: Optional[str] = None,
) -> dict:
    payment = _get_payment(db, payment_id)
    if amount is None or amount <= 0:
        raise ValidationFailure("amount must be greater than zero")
    intent = processor.create_intent(amount, currency.lower(), {
        "paymentId": str(payment["_id"]),
        "agentId": agent_id or payment["agent_id"],
        "type": "admin_to_agent",
    })
    logger.info("Payout intent %s created for payment %s", intent.id, payment_id)
    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}


def _record_payout(db: Database, payment: dict, details: AdminPaymentDetails) -> dict:
    updated = _set_payment(db, payment, {"admin_payment_details": details.model_dump()})
    logger.info("Payout recorded for payment %s via %s", payment["_id"], details.payment_method)
    return updated


def admin_pay_agent_stripe(
    db: Database,
    processor,
    payment_id: str,
    payment_intent_id: str,
    payment_method: Optional[str] = None,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    payment = _get_payment(db, payment_id)
    if not payment_intent_id:
        raise ValidationFailure("paymentIntentId is required")

    intent = processor.retrieve_intent(payment_intent_id)
    target = intent.metadata.get("paymentId")
    if target and target != str(payment["_id"]):
        raise ValidationFailure("Payment intent belongs to a different payment")
    if intent.status != SUCCEEDED:
        raise PaymentNotCompleted()

    return _record_payout(db, payment, AdminPaymentDetails(
        payment_date=now_utc(),
        payment_method=payment_method or "Stripe",
        transaction_id=transaction_id or intent.id,
        notes=notes or "Admin payment to agent via Stripe",
    ))


def admin_pay_agent_manual(
    db: Database,
    payment_id: str,
    payment_method: Optional[str] = None,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    payment = _get_payment(db, payment_id)
    return _record_payout(db, payment, AdminPaymentDetails(
        payment_date=now_utc(),
        payment_method=payment_method,
        transaction_id=transaction_id,
        notes=notes,
    ))


# ------------------------ READS ------------------------

def list_payments(db: Database) -> List[dict]:
    return [_join_booking(db, p) for p in get_documents(db, "payment", newest_first=True)]


def get_payment_details(db: Database, payment_id: str) -> dict:
    return _join_booking(db, _get_payment(db, payment_id))


def delete_payment(db: Database, payment_id: str) -> None:
    payment = _get_payment(db, payment_id)
    db["payment"].delete_one({"_id": payment["_id"]})
    booking_oid = to_object_id(payment.get("booking_id"))
    if booking_oid:
        db["booking"].update_one(
            {"_id": booking_oid, "payment_id": str(payment["_id"])},
            {"$set": {"payment_id": None, "updated_at": now_utc()}},
        )
    logger.info("Payment %s deleted", payment_id)
