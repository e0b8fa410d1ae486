from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from promo_ledger.core.context import RequestContext
from promo_ledger.core.dependencies import get_admin_context, get_ledger, get_request_context
from promo_ledger.models.promo import RedeemOutcome
from promo_ledger.schemas.promo import (
    DecisionRead,
    PromoCodeActiveUpdate,
    PromoCodeCreate,
    PromoCodeEventRead,
    PromoCodeLookup,
    PromoCodeRead,
    RedeemResultRead,
)
from promo_ledger.services.ledger import PromoLedger

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])

LedgerDep = Annotated[PromoLedger, Depends(get_ledger)]
AdminContextDep = Annotated[RequestContext, Depends(get_admin_context)]
ContextDep = Annotated[RequestContext, Depends(get_request_context)]
IncludeDeletedQuery = Annotated[bool, Query()]

_REDEEM_REASONS = {
    RedeemOutcome.accepted: None,
    RedeemOutcome.not_found: "Promo code not found",
    RedeemOutcome.inactive: "Promo code is not active",
    RedeemOutcome.not_yet_started: "Promo code is not valid yet",
    RedeemOutcome.expired: "Promo code has expired",
    RedeemOutcome.usage_exhausted: "Promo code usage limit reached",
    RedeemOutcome.race_lost: "Promo code was used up by a concurrent checkout; evaluate again",
    RedeemOutcome.unknown: "Redemption outcome unknown; evaluate before retrying",
}


@router.get("")
async def list_promo_codes(
    ledger: LedgerDep,
    _: AdminContextDep,
    include_deleted: IncludeDeletedQuery = False,
) -> list[PromoCodeRead]:
    promos = await ledger.list_codes(include_deleted=include_deleted)
    return [PromoCodeRead.model_validate(p) for p in promos]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_promo_code(payload: PromoCodeCreate, ledger: LedgerDep, context: AdminContextDep) -> PromoCodeRead:
    promo = await ledger.create(payload, context=context)
    return PromoCodeRead.model_validate(promo)


@router.post("/evaluate")
async def evaluate_promo_code(payload: PromoCodeLookup, ledger: LedgerDep, _: ContextDep) -> DecisionRead:
    decision = await ledger.evaluate(payload.code)
    return DecisionRead(
        status=decision.status,
        valid=decision.valid,
        discount_type=decision.discount_type,
        discount_value=decision.discount_value,
    )


@router.post("/redeem")
async def redeem_promo_code(payload: PromoCodeLookup, ledger: LedgerDep, _: ContextDep) -> RedeemResultRead:
    result = await ledger.redeem(payload.code)
    return RedeemResultRead(
        outcome=result.outcome,
        accepted=result.accepted,
        usage_count=result.usage_count,
        reason=_REDEEM_REASONS[result.outcome],
    )


@router.get("/{promo_id}")
async def get_promo_code(promo_id: UUID, ledger: LedgerDep, _: AdminContextDep) -> PromoCodeRead:
    return PromoCodeRead.model_validate(await ledger.get(promo_id))


@router.patch("/{promo_id}")
async def update_promo_code_activation(
    promo_id: UUID,
    payload: PromoCodeActiveUpdate,
    ledger: LedgerDep,
    context: AdminContextDep,
) -> PromoCodeRead:
    promo = await ledger.set_active(promo_id, payload.is_active, context=context)
    return PromoCodeRead.model_validate(promo)


@router.delete("/{promo_id}")
async def delete_promo_code(promo_id: UUID, ledger: LedgerDep, context: AdminContextDep) -> PromoCodeRead:
    return PromoCodeRead.model_validate(await ledger.delete(promo_id, context=context))


@router.get("/{promo_id}/events")
async def list_promo_code_events(promo_id: UUID, ledger: LedgerDep, _: AdminContextDep) -> list[PromoCodeEventRead]:
    events = await ledger.events(promo_id)
    return [PromoCodeEventRead.model_validate(e) for e in events]
