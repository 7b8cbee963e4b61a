"""
Database Schemas for the Car Rental Marketplace

Each Pydantic model below maps to a MongoDB collection with the lowercase
class name. Example: class Car -> collection "car".

References between documents (car_id, booking_id, chat_id, ...) are stored
as the string form of the target's ObjectId. User ids come from the auth
provider and are opaque strings.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime

Role = Literal["customer", "agent", "admin"]
SenderRole = Literal["customer", "agent", "admin", "system"]
CarStatus = Literal["available", "pending", "rented"]
BookingStatus = Literal["pending", "approved", "rejected"]
BookingPaymentStatus = Literal["unpaid", "paid"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]

IMAGE_SLOTS = ("cover_image", "image1", "image2", "image3", "image4")


class Car(BaseModel):
    agent_id: str = Field(..., description="Owning agent user id")
    name: str
    model: str
    year: int = Field(..., ge=1900, le=2100)
    license_no: str
    color: str
    seats: int = Field(..., ge=1, le=60)
    category: str
    transmission: str = Field(..., description="manual | automatic")
    fuel_type: str = Field(..., description="petrol | diesel | hybrid | electric")
    off_roader: Optional[str] = None
    daily_rate: float = Field(..., ge=0)
    weekly_rate: float = Field(..., ge=0)
    features: Dict[str, Any] = Field(default_factory=dict)
    cover_image: str = Field(..., description="Hosted image URL or path")
    image1: Optional[str] = None
    image2: Optional[str] = None
    image3: Optional[str] = None
    image4: Optional[str] = None
    status: CarStatus = "available"


class BankDetails(BaseModel):
    agent_name: str
    bank_name: str
    account_number: str
    account_title: str
    branch_code: Optional[str] = None


class AgentApprovalDetails(BankDetails):
    approved_at: datetime


class AdminPaymentDetails(BaseModel):
    payment_date: datetime
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class Booking(BaseModel):
    car_id: str
    customer_id: str
    agent_id: str
    date_from: datetime
    date_to: datetime
    location: str
    price: float = Field(..., ge=0)
    payment_method: Optional[str] = None
    payment_number: Optional[str] = None
    status: BookingStatus = "pending"
    payment_status: BookingPaymentStatus = "unpaid"
    payment_id: Optional[str] = None
    agent_approval_details: Optional[AgentApprovalDetails] = None


class Payment(BaseModel):
    booking_id: str
    customer_id: str
    agent_id: str
    amount: float = Field(..., gt=0, description="Amount in major currency units")
    currency: str = "usd"
    payment_method: str = "stripe"
    status: PaymentStatus = "pending"
    stripe_payment_intent_id: Optional[str] = None
    stripe_payment_method_id: Optional[str] = None
    agent_bank_details: Optional[BankDetails] = None
    admin_payment_details: Optional[AdminPaymentDetails] = None


class Chat(BaseModel):
    user_id: str = Field(..., description="Customer user id")
    agent_id: str = Field(..., description="Agent user id")
    participants: List[str] = Field(default_factory=list)
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None


class Message(BaseModel):
    chat_id: str
    sender_id: str
    sender_role: SenderRole
    text: str = Field(..., min_length=1)
    cleared_for: List[str] = Field(default_factory=list)
