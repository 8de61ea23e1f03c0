"""
shared/models/models.py
All SQLAlchemy ORM models for the Talent Booking Platform.
UUID primary keys throughout; status columns are closed enumerations.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    """Store the lower-case enum value, not the member name."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    BOOKER = "booker"
    TALENT = "talent"
    ADMIN = "admin"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"   # Talent sent an invoice
    APPROVED = "approved"                   # Invoice issued, awaiting payment
    CONFIRMED = "confirmed"                 # Paid
    DECLINED = "declined"
    COMPLETED = "completed"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GigApplicationStatus(str, PyEnum):
    INTERESTED = "interested"
    INVOICE_SENT = "invoice_sent"
    CONFIRMED = "confirmed"
    DECLINED = "declined"


class NotificationType(str, PyEnum):
    NEW_BOOKING = "new_booking"
    INVOICE_RECEIVED = "invoice_received"
    INVOICE_DECLINED = "invoice_declined"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_RECEIVED = "payment_received"
    GIG_APPLICATION = "gig_application"
    NEW_MESSAGE = "new_message"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account mirrored from the identity provider."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"), nullable=False, default=UserRole.BOOKER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    talent_profile: Mapped[Optional["TalentProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="raise"
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class TalentProfile(TimestampMixin, Base):
    """Talent-side profile, including the Pro subscription state."""
    __tablename__ = "talent_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    artist_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    act: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Subscription (set by the activation endpoint)
    is_pro_subscriber: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    plan_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    subscription_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped["User"] = relationship(back_populates="talent_profile", lazy="raise")

    def __repr__(self) -> str:
        return f"<TalentProfile {self.artist_name} pro={self.is_pro_subscriber}>"


class Booking(TimestampMixin, Base):
    """
    A booker's request for a talent. Gig opportunities are bookings posted
    without a talent; talents apply to them through GigApplication.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    talent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("talent_profiles.id"), nullable=True
    )
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    budget_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    is_gig_opportunity: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Plain reference: payments already point back at bookings
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        Index("ix_bookings_user_id_status", "user_id", "status"),
        Index("ix_bookings_talent_id_status", "talent_id", "status"),
        Index("ix_bookings_event_date", "event_date"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.status}>"


class Payment(TimestampMixin, Base):
    """
    Invoice/payment record. The commission split is frozen when the
    invoice is issued and never recomputed on status changes.
    """
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    booker_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    talent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("talent_profiles.id"), nullable=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    platform_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    talent_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("booking_id", "payment_method", name="uq_payment_booking_method"),
        CheckConstraint("total_amount > 0", name="ck_payment_total_positive"),
        Index("ix_payments_booker_id", "booker_id"),
    )


class GigApplication(TimestampMixin, Base):
    """A talent's application to a gig opportunity."""
    __tablename__ = "gig_applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    gig_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    talent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("talent_profiles.id"), nullable=False
    )
    status: Mapped[GigApplicationStatus] = mapped_column(
        _enum_column(GigApplicationStatus, "gig_application_status"),
        nullable=False,
        default=GigApplicationStatus.INTERESTED,
    )
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("gig_id", "talent_id", name="uq_gig_application_talent"),
    )


class Notification(TimestampMixin, Base):
    """Persisted in-app notification. Only the read flag ever changes."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class ChatMessage(Base):
    """Persisted booking chat line. Content is stored already redacted."""
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # No FK: rows outlive their booking until the purge task runs
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_chat_messages_booking_id", "booking_id", "created_at"),)
