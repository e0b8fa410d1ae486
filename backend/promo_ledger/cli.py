import argparse
import asyncio
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promo_ledger.core.context import RequestContext
from promo_ledger.core.errors import LedgerError
from promo_ledger.db.session import SessionLocal
from promo_ledger.models.promo import DiscountType, PromoCode
from promo_ledger.models.user import AdminRole
from promo_ledger.schemas.promo import PromoCodeCreate
from promo_ledger.services import auth as auth_service
from promo_ledger.services.ledger import PromoLedger
from promo_ledger.services.promo_store import SqlAlchemyPromoCodeStore

SessionFactory = async_sessionmaker[AsyncSession]


def _serialize_promo(promo: PromoCode) -> Dict[str, Any]:
    return {
        "id": str(promo.id),
        "code": promo.code,
        "discount_type": promo.discount_type.value,
        "discount_value": str(promo.discount_value),
        "start_date": promo.start_date.isoformat(),
        "end_date": promo.end_date.isoformat(),
        "is_active": promo.is_active,
        "usage_limit": promo.usage_limit,
        "usage_count": promo.usage_count,
    }


def _parse_datetime(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO datetime: {raw}") from exc


def _parse_decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid number: {raw}") from exc


def _parse_uuid(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid id: {raw}") from exc


async def bootstrap_admin(
    *, email: str, password: str, name: str | None, session_factory: SessionFactory = SessionLocal
) -> Dict[str, Any]:
    async with session_factory() as session:
        user = await auth_service.create_admin(session, email=email, password=password, name=name, role=AdminRole.admin)
        return {"id": str(user.id), "email": user.email, "role": user.role.value}


async def create_promo(payload: PromoCodeCreate, *, session_factory: SessionFactory = SessionLocal) -> Dict[str, Any]:
    async with session_factory() as session:
        ledger = PromoLedger(SqlAlchemyPromoCodeStore(session))
        promo = await ledger.create(payload, context=RequestContext.cli())
        return _serialize_promo(promo)


async def list_promos(*, include_deleted: bool = False, session_factory: SessionFactory = SessionLocal) -> list[Dict[str, Any]]:
    async with session_factory() as session:
        ledger = PromoLedger(SqlAlchemyPromoCodeStore(session))
        return [_serialize_promo(p) for p in await ledger.list_codes(include_deleted=include_deleted)]


async def evaluate_code(code: str, *, session_factory: SessionFactory = SessionLocal) -> Dict[str, Any]:
    async with session_factory() as session:
        decision = await PromoLedger(SqlAlchemyPromoCodeStore(session)).evaluate(code)
        return {
            "status": decision.status.value,
            "valid": decision.valid,
            "discount_type": decision.discount_type.value if decision.discount_type else None,
            "discount_value": str(decision.discount_value) if decision.discount_value is not None else None,
        }


async def set_active(promo_id: UUID, active: bool, *, session_factory: SessionFactory = SessionLocal) -> Dict[str, Any]:
    async with session_factory() as session:
        ledger = PromoLedger(SqlAlchemyPromoCodeStore(session))
        promo = await ledger.set_active(promo_id, active, context=RequestContext.cli())
        return _serialize_promo(promo)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront admin promo code utilities")
    sub = parser.add_subparsers(dest="command")

    admin = sub.add_parser("bootstrap-admin", help="Create an admin account")
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", required=True)
    admin.add_argument("--name", default=None)

    create = sub.add_parser("create-promo", help="Create a promo code")
    create.add_argument("--code", required=True)
    create.add_argument("--type", dest="discount_type", choices=[t.value for t in DiscountType], required=True)
    create.add_argument("--value", dest="discount_value", type=_parse_decimal, required=True)
    create.add_argument("--start", dest="start_date", type=_parse_datetime, required=True)
    create.add_argument("--end", dest="end_date", type=_parse_datetime, required=True)
    create.add_argument("--limit", dest="usage_limit", type=int, required=True)

    listing = sub.add_parser("list-promos", help="List promo codes as JSON")
    listing.add_argument("--include-deleted", action="store_true")

    evaluate = sub.add_parser("evaluate", help="Report whether a code is redeemable right now")
    evaluate.add_argument("code")

    toggle = sub.add_parser("set-active", help="Activate or deactivate a promo code")
    toggle.add_argument("promo_id", type=_parse_uuid)
    toggle.add_argument("state", choices=["on", "off"])
    return parser


def _run_cli_command(args: argparse.Namespace) -> Any:
    if args.command == "bootstrap-admin":
        return asyncio.run(bootstrap_admin(email=args.email, password=args.password, name=args.name))

    if args.command == "create-promo":
        payload = PromoCodeCreate(
            code=args.code,
            discount_type=DiscountType(args.discount_type),
            discount_value=args.discount_value,
            start_date=args.start_date,
            end_date=args.end_date,
            usage_limit=args.usage_limit,
        )
        return asyncio.run(create_promo(payload))

    if args.command == "list-promos":
        return asyncio.run(list_promos(include_deleted=args.include_deleted))

    if args.command == "evaluate":
        return asyncio.run(evaluate_code(args.code))

    if args.command == "set-active":
        return asyncio.run(set_active(args.promo_id, args.state == "on"))

    return None


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return
    try:
        result = _run_cli_command(args)
    except LedgerError as exc:
        raise SystemExit(f"{exc.code}: {exc.message}")
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
