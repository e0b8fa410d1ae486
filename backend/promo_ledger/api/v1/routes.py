from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger.api.v1 import auth, promo_codes
from promo_ledger.core.errors import TransientStoreError
from promo_ledger.db.session import get_session

api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(promo_codes.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/health/ready", tags=["health"])
async def readiness(session: AsyncSession = Depends(get_session)) -> dict[str, str]:
    try:
        await session.execute(text("SELECT 1"))
    except (OperationalError, InterfaceError, OSError) as exc:
        raise TransientStoreError("Database unavailable") from exc
    return {"status": "ready"}
