from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger.core.context import RequestContext
from promo_ledger.core.security import decode_token
from promo_ledger.db.session import get_session
from promo_ledger.models.user import AdminRole, AdminUser
from promo_ledger.services.ledger import PromoLedger
from promo_ledger.services.promo_store import SqlAlchemyPromoCodeStore

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> AdminUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    user = (await session.execute(select(AdminUser).where(AdminUser.id == user_id))).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return user


async def require_admin(user: AdminUser = Depends(get_current_user)) -> AdminUser:
    if user.role != AdminRole.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def _context_for(request: Request, user: AdminUser) -> RequestContext:
    return RequestContext(
        actor=user.email,
        actor_id=user.id,
        request_id=getattr(request.state, "request_id", None),
    )


async def get_request_context(request: Request, user: AdminUser = Depends(get_current_user)) -> RequestContext:
    return _context_for(request, user)


async def get_admin_context(request: Request, user: AdminUser = Depends(require_admin)) -> RequestContext:
    return _context_for(request, user)


async def get_ledger(session: AsyncSession = Depends(get_session)) -> PromoLedger:
    return PromoLedger(SqlAlchemyPromoCodeStore(session))
