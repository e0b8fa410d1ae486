from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any
from uuid import UUID

from promo_ledger.core.context import RequestContext
from promo_ledger.core.errors import NotFoundError, StoreTimeoutError, ValidationError
from promo_ledger.models.promo import DecisionStatus, DiscountType, PromoCode, PromoCodeEvent, RedeemOutcome
from promo_ledger.schemas.promo import PromoCodeCreate
from promo_ledger.services.promo_store import PromoCodeStore

logger = logging.getLogger(__name__)

CODE_MIN_LENGTH = 3
CODE_MAX_LENGTH = 40
MAX_PERCENTAGE = Decimal("100")
# Column bounds: Numeric(10, 2) and a 32-bit Integer.
MAX_DISCOUNT_VALUE = Decimal("1E8")
MAX_USAGE_LIMIT = 2**31 - 1
_CENT = Decimal("0.01")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Decision:
    status: DecisionStatus
    promo_code_id: UUID | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None

    @property
    def valid(self) -> bool:
        return self.status == DecisionStatus.valid


@dataclass(frozen=True)
class RedeemResult:
    outcome: RedeemOutcome
    usage_count: int | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == RedeemOutcome.accepted


def decide(promo: PromoCode, now: datetime) -> DecisionStatus:
    """Single redeemability reason for ``promo`` at ``now``, most significant first."""
    now = as_utc(now)
    if not promo.is_active:
        return DecisionStatus.inactive
    if now < as_utc(promo.start_date):
        return DecisionStatus.not_yet_started
    if now > as_utc(promo.end_date):
        return DecisionStatus.expired
    if promo.usage_count >= promo.usage_limit:
        return DecisionStatus.usage_exhausted
    return DecisionStatus.valid


def validate_promo_code(payload: PromoCodeCreate) -> dict[str, Any]:
    """Check field rules and return normalized column values; raises ValidationError."""
    code = normalize_code(payload.code)
    if len(code) < CODE_MIN_LENGTH:
        raise ValidationError("code", f"must be at least {CODE_MIN_LENGTH} characters")
    if len(code) > CODE_MAX_LENGTH:
        raise ValidationError("code", f"must be at most {CODE_MAX_LENGTH} characters")
    if any(ch.isspace() for ch in code):
        raise ValidationError("code", "must not contain whitespace")

    value = Decimal(payload.discount_value)
    if not value.is_finite():
        raise ValidationError("discount_value", "must be a finite number")
    if value <= 0:
        raise ValidationError("discount_value", "must be positive")
    if value >= MAX_DISCOUNT_VALUE:
        raise ValidationError("discount_value", "must be less than 100000000")
    value = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValidationError("discount_value", "must be at least 0.01")
    if value >= MAX_DISCOUNT_VALUE:
        raise ValidationError("discount_value", "must be less than 100000000")
    if payload.discount_type == DiscountType.percentage and value > MAX_PERCENTAGE:
        raise ValidationError("discount_value", "percentage discount cannot exceed 100")

    start_date = as_utc(payload.start_date)
    end_date = as_utc(payload.end_date)
    if end_date <= start_date:
        raise ValidationError("end_date", "must be after start_date")

    if isinstance(payload.usage_limit, bool) or payload.usage_limit < 1:
        raise ValidationError("usage_limit", "must be a positive integer")
    if payload.usage_limit > MAX_USAGE_LIMIT:
        raise ValidationError("usage_limit", f"must be at most {MAX_USAGE_LIMIT}")

    return {
        "code": code,
        "discount_type": payload.discount_type,
        "discount_value": value,
        "start_date": start_date,
        "end_date": end_date,
        "usage_limit": int(payload.usage_limit),
        "usage_count": 0,
        "is_active": True,
    }


class PromoLedger:
    """Validity and usage accounting for promo codes.

    Holds no promo state of its own: every call reads from or writes to the
    store, so any number of service instances can share one database.
    """

    def __init__(self, store: PromoCodeStore, *, clock: Callable[[], datetime] = _now) -> None:
        self.store = store
        self.clock = clock

    async def evaluate(self, code: str, now: datetime | None = None) -> Decision:
        cleaned = normalize_code(code)
        if not cleaned:
            return Decision(status=DecisionStatus.not_found)
        promo = await self.store.find_one(code=cleaned)
        if promo is None:
            return Decision(status=DecisionStatus.not_found)
        status = decide(promo, now or self.clock())
        if status != DecisionStatus.valid:
            return Decision(status=status, promo_code_id=promo.id)
        return Decision(
            status=status,
            promo_code_id=promo.id,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
        )

    async def redeem(self, code: str, now: datetime | None = None) -> RedeemResult:
        now = now or self.clock()
        decision = await self.evaluate(code, now)
        if not decision.valid:
            return RedeemResult(outcome=RedeemOutcome(decision.status.value))

        try:
            new_count = await self.store.conditional_increment(decision.promo_code_id)
        except StoreTimeoutError:
            # The write may still commit server-side; callers must evaluate before retrying.
            logger.warning(
                "promo_redeem_unknown",
                extra={"promo_code_id": decision.promo_code_id, "outcome": RedeemOutcome.unknown.value},
            )
            return RedeemResult(outcome=RedeemOutcome.unknown)

        if new_count is not None:
            logger.info(
                "promo_redeemed",
                extra={
                    "promo_code_id": decision.promo_code_id,
                    "outcome": RedeemOutcome.accepted.value,
                    "usage_count": new_count,
                },
            )
            return RedeemResult(outcome=RedeemOutcome.accepted, usage_count=new_count)

        outcome = await self._classify_failed_write(decision.promo_code_id, now)
        logger.info("promo_redeem_rejected", extra={"promo_code_id": decision.promo_code_id, "outcome": outcome.value})
        return RedeemResult(outcome=outcome)

    async def _classify_failed_write(self, promo_id: UUID, now: datetime) -> RedeemOutcome:
        current = await self.store.find_one(promo_id=promo_id)
        if current is None:
            return RedeemOutcome.not_found
        status = decide(current, now)
        if status in {DecisionStatus.valid, DecisionStatus.usage_exhausted}:
            return RedeemOutcome.race_lost
        return RedeemOutcome(status.value)

    async def create(self, payload: PromoCodeCreate, *, context: RequestContext) -> PromoCode:
        values = validate_promo_code(payload)
        promo = await self.store.insert(values, actor=context.actor)
        logger.info(
            "promo_created",
            extra={"promo_code_id": promo.id, "code": promo.code, "actor": context.actor},
        )
        return promo

    async def get(self, promo_id: UUID) -> PromoCode:
        promo = await self.store.find_one(promo_id=promo_id)
        if promo is None:
            raise NotFoundError("Promo code not found")
        return promo

    async def list_codes(self, *, include_deleted: bool = False) -> list[PromoCode]:
        return await self.store.list_all(include_deleted=include_deleted)

    async def set_active(self, promo_id: UUID, active: bool, *, context: RequestContext) -> PromoCode:
        promo = await self.store.set_active(promo_id, active, actor=context.actor)
        if promo is None:
            raise NotFoundError("Promo code not found")
        logger.info(
            "promo_activation_changed",
            extra={"promo_code_id": promo_id, "is_active": active, "actor": context.actor},
        )
        return promo

    async def delete(self, promo_id: UUID, *, context: RequestContext) -> PromoCode:
        promo = await self.store.soft_delete(promo_id, actor=context.actor, deleted_at=self.clock())
        if promo is None:
            raise NotFoundError("Promo code not found")
        logger.info(
            "promo_deleted",
            extra={"promo_code_id": promo_id, "usage_count": promo.usage_count, "actor": context.actor},
        )
        return promo

    async def events(self, promo_id: UUID) -> list[PromoCodeEvent]:
        promo = await self.store.find_one(promo_id=promo_id, include_deleted=True)
        if promo is None:
            raise NotFoundError("Promo code not found")
        return await self.store.list_events(promo_id)
