import asyncio
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import NOW, promo_payload
from promo_ledger.core.context import RequestContext
from promo_ledger.core.errors import DuplicateCodeError, NotFoundError, StoreTimeoutError, TransientStoreError, ValidationError
from promo_ledger.models.promo import DecisionStatus, DiscountType, PromoCode, PromoCodeEventType, RedeemOutcome
from promo_ledger.services.ledger import PromoLedger, decide, normalize_code
from promo_ledger.services.promo_store import SqlAlchemyPromoCodeStore

CTX = RequestContext(actor="owner@example.com")


def run_with_ledger(session_factory, flow):
    async def _run():
        async with session_factory() as session:
            return await flow(PromoLedger(SqlAlchemyPromoCodeStore(session), clock=lambda: NOW))

    return asyncio.run(_run())


def _promo(**overrides) -> SimpleNamespace:
    values = {
        "is_active": True,
        "start_date": NOW - timedelta(days=1),
        "end_date": NOW + timedelta(days=1),
        "usage_count": 0,
        "usage_limit": 5,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_decide_precedence_reports_one_reason():
    assert decide(_promo(), NOW) == DecisionStatus.valid
    # inactive beats expired
    assert decide(_promo(is_active=False, end_date=NOW - timedelta(hours=1)), NOW) == DecisionStatus.inactive
    assert (
        decide(_promo(start_date=NOW + timedelta(hours=1), end_date=NOW + timedelta(days=2), usage_count=5), NOW)
        == DecisionStatus.not_yet_started
    )
    assert decide(_promo(end_date=NOW - timedelta(seconds=1), usage_count=5), NOW) == DecisionStatus.expired
    assert decide(_promo(usage_count=5), NOW) == DecisionStatus.usage_exhausted


def test_decide_window_bounds_are_inclusive():
    end = NOW + timedelta(hours=2)
    promo = _promo(start_date=NOW, end_date=end)
    assert decide(promo, NOW) == DecisionStatus.valid
    assert decide(promo, end) == DecisionStatus.valid
    assert decide(promo, end + timedelta(microseconds=1)) == DecisionStatus.expired
    assert decide(promo, NOW - timedelta(microseconds=1)) == DecisionStatus.not_yet_started


def test_normalize_code():
    assert normalize_code("  save10 ") == "SAVE10"
    assert normalize_code(None) == ""


def test_create_then_evaluate_is_valid(session_factory):
    async def flow(ledger: PromoLedger):
        promo = await ledger.create(promo_payload("welcome5", usage_limit=3), context=CTX)
        assert promo.code == "WELCOME5"
        assert promo.usage_count == 0
        assert promo.is_active is True
        return await ledger.evaluate("Welcome5")

    decision = run_with_ledger(session_factory, flow)
    assert decision.status == DecisionStatus.valid
    assert decision.discount_type == DiscountType.percentage
    assert decision.discount_value == Decimal("10.00")


def test_evaluate_unknown_code_is_not_found(session_factory):
    async def flow(ledger: PromoLedger):
        return await ledger.evaluate("NOPE"), await ledger.evaluate("   ")

    missing, blank = run_with_ledger(session_factory, flow)
    assert missing.status == DecisionStatus.not_found
    assert blank.status == DecisionStatus.not_found


def test_evaluate_at_end_date_boundary(session_factory):
    end = NOW + timedelta(hours=1)

    async def flow(ledger: PromoLedger):
        await ledger.create(promo_payload("EDGE", start_date=NOW - timedelta(hours=1), end_date=end), context=CTX)
        at_end = await ledger.evaluate("EDGE", end)
        after_end = await ledger.evaluate("EDGE", end + timedelta(microseconds=1))
        return at_end, after_end

    at_end, after_end = run_with_ledger(session_factory, flow)
    assert at_end.status == DecisionStatus.valid
    assert after_end.status == DecisionStatus.expired


def test_evaluate_has_no_side_effects(session_factory):
    async def flow(ledger: PromoLedger):
        promo = await ledger.create(promo_payload("READONLY", usage_limit=2), context=CTX)
        for _ in range(5):
            assert (await ledger.evaluate("READONLY")).valid
        return await ledger.get(promo.id)

    promo = run_with_ledger(session_factory, flow)
    assert promo.usage_count == 0


def test_inactive_and_expired_reports_inactive(session_factory):
    async def flow(ledger: PromoLedger):
        promo = await ledger.create(promo_payload("OLD"), context=CTX)
        await ledger.set_active(promo.id, False, context=CTX)
        return await ledger.evaluate("OLD", NOW + timedelta(days=30))

    assert run_with_ledger(session_factory, flow).status == DecisionStatus.inactive


def test_save10_single_use_scenario(session_factory):
    async def flow(ledger: PromoLedger):
        await ledger.create(promo_payload("SAVE10", usage_limit=1), context=CTX)
        first = await ledger.redeem("SAVE10")
        second = await ledger.redeem("save10")
        return first, second

    first, second = run_with_ledger(session_factory, flow)
    assert first.outcome == RedeemOutcome.accepted
    assert first.usage_count == 1
    assert second.outcome == RedeemOutcome.usage_exhausted
    assert second.usage_count is None


def test_redeem_reports_evaluation_rejections(session_factory):
    async def flow(ledger: PromoLedger):
        await ledger.create(
            promo_payload("LATER", start_date=NOW + timedelta(days=1), end_date=NOW + timedelta(days=2)), context=CTX
        )
        return await ledger.redeem("LATER"), await ledger.redeem("MISSING")

    later, missing = run_with_ledger(session_factory, flow)
    assert later.outcome == RedeemOutcome.not_yet_started
    assert missing.outcome == RedeemOutcome.not_found


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"code": "ab"}, "code"),
        ({"code": "A" * 41}, "code"),
        ({"code": "TWO WORDS"}, "code"),
        ({"discount_value": Decimal("0")}, "discount_value"),
        ({"discount_value": Decimal("-5")}, "discount_value"),
        ({"discount_value": Decimal("100.01")}, "discount_value"),
        ({"end_date": NOW - timedelta(days=1)}, "end_date"),
        ({"usage_limit": 0}, "usage_limit"),
        ({"discount_type": DiscountType.fixed, "discount_value": Decimal("1E+30")}, "discount_value"),
        ({"discount_type": DiscountType.fixed, "discount_value": Decimal("100000000")}, "discount_value"),
        ({"discount_type": DiscountType.fixed, "discount_value": Decimal("99999999.999")}, "discount_value"),
        ({"discount_value": Decimal("0.004")}, "discount_value"),
        ({"usage_limit": 2**31}, "usage_limit"),
    ],
)
def test_create_rejects_invalid_fields(session_factory, overrides, field):
    payload = promo_payload(**overrides)

    async def flow(ledger: PromoLedger):
        with pytest.raises(ValidationError) as excinfo:
            await ledger.create(payload, context=CTX)
        return excinfo.value

    err = run_with_ledger(session_factory, flow)
    assert err.field == field


def test_fixed_discount_may_exceed_one_hundred(session_factory):
    async def flow(ledger: PromoLedger):
        return await ledger.create(
            promo_payload("BIGFIXED", discount_type=DiscountType.fixed, discount_value=Decimal("250")), context=CTX
        )

    assert run_with_ledger(session_factory, flow).discount_value == Decimal("250.00")


@pytest.mark.parametrize(
    ("value", "reason"),
    [
        (Decimal("0.004"), "must be at least 0.01"),
        (Decimal("-0.004"), "must be positive"),
        (Decimal("1E+30"), "must be less than 100000000"),
    ],
)
def test_discount_value_reasons(session_factory, value, reason):
    payload = promo_payload("EDGE", discount_type=DiscountType.fixed, discount_value=value)

    async def flow(ledger: PromoLedger):
        with pytest.raises(ValidationError) as excinfo:
            await ledger.create(payload, context=CTX)
        return excinfo.value

    assert run_with_ledger(session_factory, flow).reason == reason


def test_create_rejects_duplicate_code_case_insensitively(session_factory):
    async def flow(ledger: PromoLedger):
        await ledger.create(promo_payload("Summer"), context=CTX)
        with pytest.raises(DuplicateCodeError):
            await ledger.create(promo_payload("SUMMER"), context=CTX)
        return await ledger.list_codes()

    promos = run_with_ledger(session_factory, flow)
    assert [p.code for p in promos] == ["SUMMER"]


def test_set_active_only_touches_flag(session_factory):
    async def flow(ledger: PromoLedger):
        promo = await ledger.create(promo_payload("TOGGLE", usage_limit=3), context=CTX)
        await ledger.redeem("TOGGLE")
        off = await ledger.set_active(promo.id, False, context=CTX)
        rejected = await ledger.redeem("TOGGLE")
        on = await ledger.set_active(promo.id, True, context=CTX)
        return off, rejected, on

    off, rejected, on = run_with_ledger(session_factory, flow)
    assert off.is_active is False
    assert off.usage_count == 1
    assert rejected.outcome == RedeemOutcome.inactive
    assert on.is_active is True
    assert on.usage_count == 1
    assert on.usage_limit == 3


def test_set_active_unknown_id_raises_not_found(session_factory):
    async def flow(ledger: PromoLedger):
        with pytest.raises(NotFoundError):
            await ledger.set_active(uuid4(), True, context=CTX)

    run_with_ledger(session_factory, flow)


def test_delete_is_soft_and_frees_the_code(session_factory):
    async def flow(ledger: PromoLedger):
        old = await ledger.create(promo_payload("REUSE", usage_limit=2), context=CTX)
        await ledger.redeem("REUSE")
        deleted = await ledger.delete(old.id, context=CTX)
        gone = await ledger.evaluate("REUSE")
        with pytest.raises(NotFoundError):
            await ledger.get(old.id)
        with pytest.raises(NotFoundError):
            await ledger.delete(old.id, context=CTX)
        fresh = await ledger.create(promo_payload("reuse"), context=CTX)
        everything = await ledger.list_codes(include_deleted=True)
        live = await ledger.list_codes()
        return deleted, gone, fresh, everything, live

    deleted, gone, fresh, everything, live = run_with_ledger(session_factory, flow)
    assert deleted.deleted_at is not None
    assert deleted.usage_count == 1
    assert gone.status == DecisionStatus.not_found
    assert fresh.id != deleted.id
    assert {p.id for p in everything} == {deleted.id, fresh.id}
    assert [p.id for p in live] == [fresh.id]


def test_admin_actions_are_recorded_as_events(session_factory):
    async def flow(ledger: PromoLedger):
        promo = await ledger.create(promo_payload("AUDITED"), context=CTX)
        await ledger.set_active(promo.id, False, context=RequestContext(actor="staff@example.com"))
        await ledger.delete(promo.id, context=CTX)
        return await ledger.events(promo.id)

    events = run_with_ledger(session_factory, flow)
    assert [e.event for e in events] == [
        PromoCodeEventType.created,
        PromoCodeEventType.deactivated,
        PromoCodeEventType.deleted,
    ]
    assert events[1].actor == "staff@example.com"


def test_usage_count_stays_within_limit_in_storage(session_factory):
    async def flow(ledger: PromoLedger):
        await ledger.create(promo_payload("CAP", usage_limit=2), context=CTX)
        results = [await ledger.redeem("CAP") for _ in range(4)]
        query = select(PromoCode).where(PromoCode.code == "CAP").execution_options(populate_existing=True)
        row = (await ledger.store.session.execute(query)).scalar_one()
        return results, row.usage_count

    results, stored = run_with_ledger(session_factory, flow)
    assert [r.outcome for r in results] == [
        RedeemOutcome.accepted,
        RedeemOutcome.accepted,
        RedeemOutcome.usage_exhausted,
        RedeemOutcome.usage_exhausted,
    ]
    assert [r.usage_count for r in results[:2]] == [1, 2]
    assert stored == 2


class _ScriptedStore:
    """Store double returning a fixed live promo and scripted write behaviour."""

    def __init__(self, *, write=None, reread=None):
        self.promo = SimpleNamespace(
            id=uuid4(),
            code="RACE",
            is_active=True,
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=1),
            usage_count=0,
            usage_limit=1,
            discount_type=DiscountType.fixed,
            discount_value=Decimal("5.00"),
        )
        self.write = write
        self.reread = reread
        self.finds = 0

    async def find_one(self, *, promo_id=None, code=None, include_deleted=False):
        self.finds += 1
        if self.finds > 1 and self.reread is not None:
            return self.reread(self.promo)
        return self.promo

    async def conditional_increment(self, promo_id, *, delta=1):
        return await self.write()


def test_redeem_reports_race_lost_when_guard_fails():
    async def lost_write():
        return None

    def exhausted(promo):
        promo.usage_count = promo.usage_limit
        return promo

    ledger = PromoLedger(_ScriptedStore(write=lost_write, reread=exhausted), clock=lambda: NOW)
    result = asyncio.run(ledger.redeem("RACE"))
    assert result.outcome == RedeemOutcome.race_lost


def test_redeem_reports_current_reason_when_deactivated_mid_flight():
    async def lost_write():
        return None

    def deactivated(promo):
        promo.is_active = False
        return promo

    ledger = PromoLedger(_ScriptedStore(write=lost_write, reread=deactivated), clock=lambda: NOW)
    assert asyncio.run(ledger.redeem("RACE")).outcome == RedeemOutcome.inactive

    ledger = PromoLedger(_ScriptedStore(write=lost_write, reread=lambda promo: None), clock=lambda: NOW)
    assert asyncio.run(ledger.redeem("RACE")).outcome == RedeemOutcome.not_found


def test_redeem_timeout_reports_unknown():
    async def slow_write():
        raise StoreTimeoutError("timed out")

    ledger = PromoLedger(_ScriptedStore(write=slow_write), clock=lambda: NOW)
    result = asyncio.run(ledger.redeem("RACE"))
    assert result.outcome == RedeemOutcome.unknown
    assert result.accepted is False


def test_redeem_propagates_transient_store_errors():
    async def broken_write():
        raise TransientStoreError("connection reset")

    ledger = PromoLedger(_ScriptedStore(write=broken_write), clock=lambda: NOW)
    with pytest.raises(TransientStoreError):
        asyncio.run(ledger.redeem("RACE"))


def test_store_timeout_is_raised_from_slow_calls(session_factory):
    async def flow():
        async with session_factory() as session:
            store = SqlAlchemyPromoCodeStore(session, timeout_seconds=0.01)

            async def never_finishes():
                await asyncio.sleep(1)

            with pytest.raises(StoreTimeoutError):
                await store._call(never_finishes)

    asyncio.run(flow())
