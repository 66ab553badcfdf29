"""
Database Schemas for the print shop

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime

ORDER_STATUSES = ("pending", "confirmed", "designing", "printing", "completed", "cancelled")
PAYMENT_STATUSES = ("unpaid", "created", "paid")


class User(BaseModel):
    email: str = Field(..., description="Normalized (trimmed, lowercased) email, unique")
    name: str = Field("", description="Display name")
    password_hash: str = Field(..., description="bcrypt hash")
    phone: str = Field("", description="Digits only")
    address: str = Field("")
    is_admin: bool = Field(False, description="Derived from ADMIN_EMAIL, re-synced on every read")
    email_verified: bool = Field(False)
    phone_verified: bool = Field(False)


class OTP(BaseModel):
    user_id: str
    email: str
    otp_hash: str
    attempts: int = 0
    created_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None


class Session(BaseModel):
    user_id: str
    token: str
    created_at: datetime


class OrderFile(BaseModel):
    filename: str
    path: str
    original_name: str
    mime_type: str
    size: int


class Order(BaseModel):
    user_id: str
    service_type: str = "print"
    size: str = ""
    custom_w: float = 0
    custom_h: float = 0
    finish: str = "vinyl"
    quantity: int = Field(1, ge=1)
    delivery: str = "deliver"
    instructions: str = ""
    price: float = Field(0, ge=0)
    delivery_fee: float = Field(0, ge=0)
    total: float = Field(0, ge=0)
    files: List[OrderFile] = Field(default_factory=list, description="In upload order")
    status: Literal["pending", "confirmed", "designing", "printing", "completed", "cancelled"] = "pending"
    payment_status: Literal["unpaid", "created", "paid"] = "unpaid"
    payment_provider: Optional[str] = None
    payment_order_id: Optional[str] = None
    payment_payment_id: Optional[str] = None
    payment_signature: Optional[str] = None
    payment_amount: Optional[int] = Field(None, description="Provider-confirmed amount in minor units")
    paid_at: Optional[datetime] = None


class SessionView(BaseModel):
    """The part of a user that is handed to the client after authentication."""
    id: str
    email: str
    name: str = ""
    phone: str = ""
    address: str = ""
    is_admin: bool = False
    email_verified: bool = False
    phone_verified: bool = False
