from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from promo_ledger.models.promo import DecisionStatus, DiscountType, PromoCodeEventType, RedeemOutcome


class PromoCodeCreate(BaseModel):
    # Range and window rules live in the ledger so the CLI gets the same checks.
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    start_date: datetime
    end_date: datetime
    usage_limit: int


class PromoCodeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    start_date: datetime
    end_date: datetime
    is_active: bool
    usage_limit: int
    usage_count: int
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class PromoCodeActiveUpdate(BaseModel):
    """Admin patch body. Only the activation flag is writable; usage is never patched."""

    model_config = ConfigDict(extra="forbid")

    is_active: bool


class PromoCodeEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event: PromoCodeEventType
    actor: str
    note: str | None = None
    created_at: datetime


class PromoCodeLookup(BaseModel):
    code: str


class DecisionRead(BaseModel):
    status: DecisionStatus
    valid: bool
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None


class RedeemResultRead(BaseModel):
    outcome: RedeemOutcome
    accepted: bool
    usage_count: int | None = None
    reason: str | None = None
