import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

import bookings
import cars
import chats
import payments
from database import connect, ensure_indexes, serialize_doc
from errors import ServiceError
from processor import MockProcessor, StripeProcessor
from schemas import BankDetails
from settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    db: Optional[Database]
    processor: Any


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if isinstance(data, list):
        body["data"] = [serialize_doc(d) if isinstance(d, dict) else d for d in data]
    elif isinstance(data, dict):
        body["data"] = serialize_doc(data)
    elif data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def get_db(ctx: AppContext = Depends(get_ctx)) -> Database:
    if ctx.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return ctx.db


def get_processor(ctx: AppContext = Depends(get_ctx)):
    return ctx.processor


# Utility request models
class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CarRequest(CamelModel):
    agent_id: Optional[str] = Field(None, alias="agentId")
    name: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    license_no: Optional[str] = Field(None, alias="licenseNo")
    color: Optional[str] = None
    seats: Optional[int] = None
    category: Optional[str] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = Field(None, alias="fuelType")
    off_roader: Optional[str] = Field(None, alias="offRoader")
    daily_rate: Optional[float] = Field(None, alias="dailyRate")
    weekly_rate: Optional[float] = Field(None, alias="weeklyRate")
    features: Optional[Dict[str, Any]] = None
    cover_image: Optional[str] = Field(None, alias="coverImage")
    image1: Optional[str] = None
    image2: Optional[str] = None
    image3: Optional[str] = None
    image4: Optional[str] = None


class BookingRequest(CamelModel):
    car: str
    customer: str
    agent: str
    date_from: datetime = Field(..., alias="dateFrom")
    date_to: datetime = Field(..., alias="dateTo")
    location: str
    price: float
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    payment_number: Optional[str] = Field(None, alias="paymentNumber")


class PaymentStatusRequest(CamelModel):
    payment_status: str = Field(..., alias="paymentStatus")


class PaymentIntentRequest(CamelModel):
    booking_id: str = Field(..., alias="bookingId")
    amount: float
    currency: str = "usd"


class ConfirmPaymentRequest(CamelModel):
    payment_intent_id: str = Field(..., alias="paymentIntentId")
    payment_id: str = Field(..., alias="paymentId")


class AdminPaymentIntentRequest(CamelModel):
    payment_id: str = Field(..., alias="paymentId")
    amount: float
    currency: str = "usd"
    agent_id: Optional[str] = Field(None, alias="agentId")


class AdminPayAgentRequest(CamelModel):
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    notes: Optional[str] = None


class AdminPayAgentStripeRequest(AdminPayAgentRequest):
    payment_intent_id: str = Field(..., alias="paymentIntentId")


class BankDetailsRequest(CamelModel):
    agent_name: str = Field(..., alias="agentName")
    bank_name: str = Field(..., alias="bankName")
    account_number: str = Field(..., alias="accountNumber")
    account_title: str = Field(..., alias="accountTitle")
    branch_code: Optional[str] = Field(None, alias="branchCode")


class ChatRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userId")
    agent_id: Optional[str] = Field(None, alias="agentId")


class MessageRequest(CamelModel):
    chat_id: Optional[str] = Field(None, alias="chatId")
    sender_id: Optional[str] = Field(None, alias="senderId")
    sender_role: Optional[str] = Field(None, alias="senderRole")
    text: Optional[str] = None


class EditMessageRequest(CamelModel):
    text: Optional[str] = None


router = APIRouter(prefix="/api")


# ------------------------ CARS ------------------------
@router.post("/cars", status_code=201)
def add_car(payload: CarRequest, db: Database = Depends(get_db)):
    car = cars.create_car(db, payload.model_dump(exclude_none=True))
    return ok(car, "Car added successfully")


@router.get("/cars")
def get_all_cars(agent_id: Optional[str] = Query(None, alias="agentId"), db: Database = Depends(get_db)):
    items = cars.list_cars(db, agent_id)
    return {**ok(items), "count": len(items)}


@router.get("/cars/{car_id}")
def get_car(car_id: str, db: Database = Depends(get_db)):
    return ok(cars.get_car(db, car_id))


@router.put("/cars/{car_id}")
def update_car(car_id: str, payload: CarRequest, db: Database = Depends(get_db)):
    car = cars.update_car(db, car_id, payload.model_dump(exclude_none=True))
    return ok(car, "Car updated successfully")


@router.delete("/cars/{car_id}")
def delete_car(car_id: str, db: Database = Depends(get_db)):
    media = cars.delete_car(db, car_id)
    return ok({"removedMedia": media}, "Car deleted successfully")


# ------------------------ BOOKINGS ------------------------
@router.post("/bookings", status_code=201)
def create_booking(payload: BookingRequest, db: Database = Depends(get_db)):
    booking = bookings.create_booking(
        db,
        car_id=payload.car,
        customer_id=payload.customer,
        agent_id=payload.agent,
        date_from=payload.date_from,
        date_to=payload.date_to,
        location=payload.location,
        price=payload.price,
        payment_method=payload.payment_method,
        payment_number=payload.payment_number,
    )
    return ok(booking)


@router.get("/bookings")
def list_all_bookings(db: Database = Depends(get_db)):
    return ok(bookings.list_all_bookings(db))


@router.get("/bookings/agent/{agent_id}")
def list_agent_bookings(agent_id: str, db: Database = Depends(get_db)):
    return ok(bookings.list_agent_bookings(db, agent_id))


@router.get("/bookings/customer/{customer_id}")
def list_customer_bookings(customer_id: str, db: Database = Depends(get_db)):
    return ok(bookings.list_customer_bookings(db, customer_id))


@router.get("/bookings/{booking_id}")
def get_booking(booking_id: str, db: Database = Depends(get_db)):
    return ok(bookings.get_booking_with_car(db, booking_id))


@router.patch("/bookings/{booking_id}/approve")
def approve_booking(booking_id: str, db: Database = Depends(get_db)):
    return ok(bookings.approve_booking(db, booking_id))


@router.patch("/bookings/{booking_id}/reject")
def reject_booking(booking_id: str, db: Database = Depends(get_db)):
    return ok(bookings.reject_booking(db, booking_id))


@router.patch("/bookings/{booking_id}/payment-status")
def update_payment_status(booking_id: str, payload: PaymentStatusRequest, db: Database = Depends(get_db)):
    return ok(bookings.update_payment_status(db, booking_id, payload.payment_status))


@router.delete("/bookings/{booking_id}")
def delete_booking(booking_id: str, db: Database = Depends(get_db)):
    bookings.delete_booking(db, booking_id)
    return ok(message="Booking deleted successfully")


# ------------------------ PAYMENTS ------------------------
@router.post("/payments/create-payment-intent")
def create_payment_intent(payload: PaymentIntentRequest, db: Database = Depends(get_db), processor=Depends(get_processor)):
    data = payments.create_payment_intent(db, processor, payload.booking_id, payload.amount, payload.currency)
    return ok(data)


@router.post("/payments/confirm-payment")
def confirm_payment(payload: ConfirmPaymentRequest, db: Database = Depends(get_db), processor=Depends(get_processor)):
    payments.confirm_payment(db, processor, payload.payment_intent_id, payload.payment_id)
    return ok(message="Payment confirmed successfully")


@router.post("/payments/create-admin-payment-intent")
def create_admin_payment_intent(payload: AdminPaymentIntentRequest, db: Database = Depends(get_db), processor=Depends(get_processor)):
    data = payments.create_admin_payment_intent(
        db, processor, payload.payment_id, payload.amount, payload.currency, payload.agent_id,
    )
    return ok(data)


@router.post("/payments/booking/{booking_id}/approve-with-bank-details")
def approve_with_bank_details(booking_id: str, payload: BankDetailsRequest, db: Database = Depends(get_db)):
    details = BankDetails(**payload.model_dump())
    booking = bookings.approve_with_bank_details(db, booking_id, details)
    return ok(booking, "Booking approved with bank details")


@router.post("/payments/{payment_id}/admin-pay-agent")
def admin_pay_agent(payment_id: str, payload: AdminPayAgentRequest, db: Database = Depends(get_db)):
    payments.admin_pay_agent_manual(
        db, payment_id, payload.payment_method, payload.transaction_id, payload.notes,
    )
    return ok(message="Payment to agent recorded successfully")


@router.post("/payments/{payment_id}/admin-pay-agent-stripe")
def admin_pay_agent_stripe(payment_id: str, payload: AdminPayAgentStripeRequest, db: Database = Depends(get_db), processor=Depends(get_processor)):
    payments.admin_pay_agent_stripe(
        db, processor, payment_id, payload.payment_intent_id,
        payload.payment_method, payload.transaction_id, payload.notes,
    )
    return ok(message="Payment to agent recorded successfully")


@router.get("/payments/admin/all")
def list_payments(db: Database = Depends(get_db)):
    return ok(payments.list_payments(db))


@router.get("/payments/{payment_id}")
def get_payment(payment_id: str, db: Database = Depends(get_db)):
    return ok(payments.get_payment_details(db, payment_id))


@router.delete("/payments/{payment_id}")
def delete_payment(payment_id: str, db: Database = Depends(get_db)):
    payments.delete_payment(db, payment_id)
    return ok(message="Payment deleted")


# ------------------------ CHATS ------------------------
@router.post("/chats")
def create_chat(payload: ChatRequest, db: Database = Depends(get_db)):
    return ok(chats.create_or_get_chat(db, payload.user_id, payload.agent_id))


@router.get("/chats")
def list_chats(
    user_id: Optional[str] = Query(None, alias="userId"),
    agent_id: Optional[str] = Query(None, alias="agentId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return ok(chats.list_chats(db, user_id, agent_id, role))


@router.get("/chats/{chat_id}/messages")
def list_messages(
    chat_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return ok(chats.list_messages(db, chat_id, user_id, role))


@router.post("/chats/messages", status_code=201)
def send_message(payload: MessageRequest, db: Database = Depends(get_db)):
    message = chats.send_message(db, payload.chat_id, payload.sender_id, payload.sender_role, payload.text)
    return ok(message)


@router.patch("/chats/messages/{message_id}")
def edit_message(
    message_id: str,
    payload: EditMessageRequest,
    user_id: Optional[str] = Query(None, alias="userId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return ok(chats.edit_message(db, message_id, user_id, role, payload.text))


@router.delete("/chats/messages/{message_id}")
def delete_message(
    message_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    chats.delete_message(db, message_id, user_id, role)
    return ok(message="Message deleted")


@router.delete("/chats/{chat_id}")
def delete_chat(
    chat_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    chats.delete_chat(db, chat_id, user_id, role)
    return ok(message="Chat and all messages deleted")


@router.delete("/chats/{chat_id}/messages")
def clear_chat(
    chat_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    role: Optional[str] = None,
    db: Database = Depends(get_db),
):
    chats.clear_chat(db, chat_id, user_id, role)
    if chats.is_admin(role):
        return ok(message="All messages cleared from chat (admin)")
    return ok(message="Chat cleared for this user only")


# ------------------------ ERRORS ------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def service_error_handler(request: Request, exc: ServiceError):
    return _error(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query"))
    return _error(400, f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request"))


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ------------------------ APP ------------------------
def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None, processor=None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if db is None:
        db = connect(settings)
    if db is not None:
        ensure_indexes(db)
    if processor is None:
        if settings.stripe_available():
            processor = StripeProcessor(settings.stripe_secret, timeout=settings.processor_timeout)
        else:
            logger.warning("STRIPE_SECRET not set; payments use the mock processor")
            processor = MockProcessor()

    app = FastAPI(title="Car Rental Marketplace API")
    app.state.ctx = AppContext(settings=settings, db=db, processor=processor)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.get("/")
    def root():
        return {"message": "Car Rental API is running"}

    @app.get("/test")
    def test_database():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "❌ Not Set",
            "database_name": "❌ Not Set",
            "connection_status": "Not Connected",
            "payments": "Stripe" if settings.stripe_available() else "Mock",
            "collections": []
        }
        try:
            ctx_db = app.state.ctx.db
            if ctx_db is not None:
                response["database"] = "✅ Available"
                response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
                response["database_name"] = "✅ Set" if settings.database_name else "❌ Not Set"
                response["connection_status"] = "Connected"
                response["collections"] = ctx_db.list_collection_names()
            return response
        except Exception as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
            return response

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = app.state.ctx.settings.port
    uvicorn.run(app, host="0.0.0.0", port=port)
