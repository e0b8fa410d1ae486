import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_ledger.db.base import Base


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class PromoCodeEventType(str, enum.Enum):
    created = "created"
    activated = "activated"
    deactivated = "deactivated"
    deleted = "deleted"


class DecisionStatus(str, enum.Enum):
    """Why a code is or is not redeemable. Declared in reporting precedence order."""

    not_found = "not_found"
    inactive = "inactive"
    not_yet_started = "not_yet_started"
    expired = "expired"
    usage_exhausted = "usage_exhausted"
    valid = "valid"


class RedeemOutcome(str, enum.Enum):
    accepted = "accepted"
    not_found = "not_found"
    inactive = "inactive"
    not_yet_started = "not_yet_started"
    expired = "expired"
    usage_exhausted = "usage_exhausted"
    race_lost = "race_lost"
    unknown = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_LIVE_ONLY = text("deleted_at IS NULL")


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("usage_limit > 0", name="ck_promo_codes_usage_limit_positive"),
        CheckConstraint("usage_count >= 0", name="ck_promo_codes_usage_count_non_negative"),
        CheckConstraint("usage_count <= usage_limit", name="ck_promo_codes_usage_within_limit"),
        # Codes are stored normalized, so a plain unique index over live rows is case-insensitive.
        Index(
            "uq_promo_codes_live_code",
            "code",
            unique=True,
            postgresql_where=_LIVE_ONLY,
            sqlite_where=_LIVE_ONLY,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType, name="promo_discount_type"), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    events: Mapped[list["PromoCodeEvent"]] = relationship(
        back_populates="promo_code", order_by="PromoCodeEvent.created_at", cascade="all, delete-orphan"
    )


class PromoCodeEvent(Base):
    __tablename__ = "promo_code_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    promo_code_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promo_codes.id"), nullable=False, index=True
    )
    event: Mapped[PromoCodeEventType] = mapped_column(Enum(PromoCodeEventType, name="promo_code_event_type"), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    promo_code: Mapped[PromoCode] = relationship(back_populates="events")
