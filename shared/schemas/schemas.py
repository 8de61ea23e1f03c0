"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform,
plus the typed row-change events consumed by the workflow listener.
"""

import uuid
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import BookingStatus, GigApplicationStatus, PaymentStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    role: str
    created_at: datetime


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    talent_id: Optional[uuid.UUID] = None
    event_type: str = Field(..., min_length=2, max_length=100)
    event_date: date
    event_location: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    budget: Optional[Decimal] = Field(None, gt=0)
    budget_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_gig_opportunity: bool = False

    @model_validator(mode="after")
    def talent_or_gig(self) -> "BookingCreateRequest":
        if not self.is_gig_opportunity and self.talent_id is None:
            raise ValueError("talent_id is required unless posting a gig opportunity")
        return self


class BookingResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    talent_id: Optional[uuid.UUID]
    status: str
    event_type: str
    event_date: date
    event_location: Optional[str]
    description: Optional[str]
    budget: Optional[Decimal]
    budget_currency: Optional[str]
    is_gig_opportunity: bool
    payment_id: Optional[uuid.UUID]
    created_at: datetime
    updated_at: datetime


class DeclineInvoiceRequest(BaseSchema):
    booking_id: uuid.UUID


# ── Invoice ───────────────────────────────────────────────────

def _whole_cents(value: Decimal) -> Decimal:
    """Amounts are charged in cents; anything that rounds to zero is invalid."""
    if value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) <= 0:
        raise ValueError("amount must be at least 0.01")
    return value


class InvoiceCreateRequest(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    booking_id: uuid.UUID = Field(..., alias="bookingId")
    agreed_price: Decimal = Field(..., gt=0, alias="agreedPrice")
    currency: str = Field("USD", min_length=3, max_length=3)
    # Accepted for compatibility; the rate is always derived from the subscription
    platform_commission_rate: Optional[Decimal] = Field(None, alias="platformCommissionRate")

    @field_validator("agreed_price")
    @classmethod
    def price_in_cents(cls, value: Decimal) -> Decimal:
        return _whole_cents(value)


class InvoicePaymentSummary(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    id: uuid.UUID
    total_amount: float = Field(..., alias="totalAmount")
    currency: str
    platform_commission: float = Field(..., alias="platformCommission")
    talent_earnings: float = Field(..., alias="talentEarnings")


class InvoiceCreateResponse(BaseSchema):
    success: bool = True
    payment: InvoicePaymentSummary


class ManualInvoiceRequest(BaseSchema):
    """Talent-initiated invoice for a direct booking or a gig application."""
    type: Literal["booking", "gig"]
    booking_id: Optional[uuid.UUID] = None
    gig_application_id: Optional[uuid.UUID] = None
    amount: Decimal = Field(..., gt=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("amount")
    @classmethod
    def amount_in_cents(cls, value: Decimal) -> Decimal:
        return _whole_cents(value)

    @model_validator(mode="after")
    def target_present(self) -> "ManualInvoiceRequest":
        if self.type == "booking" and self.booking_id is None:
            raise ValueError("booking_id is required for booking invoices")
        if self.type == "gig" and self.gig_application_id is None:
            raise ValueError("gig_application_id is required for gig invoices")
        return self


# ── Payment ───────────────────────────────────────────────────

class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    booker_id: uuid.UUID
    talent_id: Optional[uuid.UUID]
    total_amount: Decimal
    commission_rate: int
    platform_commission: Decimal
    talent_earnings: Decimal
    currency: str
    payment_status: str
    payment_method: str
    processed_at: Optional[datetime]
    created_at: datetime


# ── Gig ───────────────────────────────────────────────────────

class GigApplyRequest(BaseSchema):
    message: Optional[str] = Field(None, max_length=1000)


class GigApplicationResponse(BaseSchema):
    id: uuid.UUID
    gig_id: uuid.UUID
    talent_id: uuid.UUID
    status: str
    message: Optional[str]
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    message: str
    booking_id: Optional[uuid.UUID]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


# ── Subscription ──────────────────────────────────────────────

class SubscriptionActivateRequest(BaseSchema):
    user_id: uuid.UUID
    subscription_id: str = Field(..., min_length=1, max_length=100)
    plan_id: str = Field(..., min_length=1, max_length=100)


class SubscriptionActivateResponse(BaseSchema):
    success: bool = True
    message: str
    subscription_period: Literal["monthly", "yearly"]
    subscription_end: datetime


# ── Maintenance ───────────────────────────────────────────────

class CleanupResponse(BaseSchema):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    deleted_count: int = Field(..., alias="deletedCount")
    message: str


# ── Chat ──────────────────────────────────────────────────────

class ChatMessageCreate(BaseSchema):
    content: str = Field(..., min_length=1, max_length=2000)


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    created_at: datetime


# ── Change Events ─────────────────────────────────────────────

class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BookingRow(_Row):
    id: str
    user_id: str
    talent_id: Optional[str] = None
    status: BookingStatus
    event_type: Optional[str] = None
    event_date: Optional[date] = None
    payment_id: Optional[str] = None


class PaymentRow(_Row):
    id: str
    booking_id: str
    booker_id: str
    talent_id: Optional[str] = None
    payment_status: PaymentStatus
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None


class GigApplicationRow(_Row):
    id: str
    gig_id: str
    talent_id: str
    status: GigApplicationStatus


ROW_MODELS = {
    "bookings": BookingRow,
    "payments": PaymentRow,
    "gig_applications": GigApplicationRow,
}

Row = Union[BookingRow, PaymentRow, GigApplicationRow]


class ChangeEvent(BaseModel):
    """
    One row-level change as delivered by the change feed.
    `old` is None for inserts. Unknown status values fail validation here,
    before any classification happens.
    """
    model_config = ConfigDict(populate_by_name=True)

    table: Literal["bookings", "payments", "gig_applications"]
    type: ChangeType
    schema_name: str = Field("public", alias="schema")
    old: Optional[Row] = None
    new: Row

    @model_validator(mode="before")
    @classmethod
    def typed_rows(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        row_model = ROW_MODELS.get(data.get("table"))
        if row_model is None:
            return data
        data = dict(data)
        for key in ("old", "new"):
            value = data.get(key)
            if isinstance(value, dict):
                data[key] = row_model.model_validate(value) if value else None
        return data
