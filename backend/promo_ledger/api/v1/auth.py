import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger.core import security
from promo_ledger.core.dependencies import get_current_user
from promo_ledger.db.session import get_session
from promo_ledger.models.user import AdminUser
from promo_ledger.schemas.auth import AdminUserRead, LoginRequest, TokenResponse
from promo_ledger.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session)) -> TokenResponse:
    user = await auth_service.authenticate_admin(session, payload.email, payload.password)
    logger.info("admin_login", extra={"admin_id": user.id})
    return TokenResponse(
        access_token=security.create_access_token(str(user.id)),
        user=AdminUserRead.model_validate(user),
    )


@router.get("/me", response_model=AdminUserRead)
async def me(current_user: AdminUser = Depends(get_current_user)) -> AdminUserRead:
    return AdminUserRead.model_validate(current_user)
