import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger.core import security
from promo_ledger.core.errors import ConflictError, ValidationError
from promo_ledger.models.user import AdminRole, AdminUser

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_admin_by_email(session: AsyncSession, email: str) -> AdminUser | None:
    result = await session.execute(select(AdminUser).where(AdminUser.email == _normalize_email(email)))
    return result.scalar_one_or_none()


async def create_admin(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str | None = None,
    role: AdminRole = AdminRole.admin,
) -> AdminUser:
    email_norm = _normalize_email(email)
    if "@" not in email_norm:
        raise ValidationError("email", "must be a valid email address")
    if len(password or "") < PASSWORD_MIN_LENGTH:
        raise ValidationError("password", f"must be at least {PASSWORD_MIN_LENGTH} characters")
    if await get_admin_by_email(session, email_norm):
        raise ConflictError("Email already registered")

    user = AdminUser(
        email=email_norm,
        hashed_password=security.hash_password(password),
        name=(name or "").strip() or None,
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("admin_created", extra={"admin_id": user.id, "role": role.value})
    return user


async def authenticate_admin(session: AsyncSession, email: str, password: str) -> AdminUser:
    user = await get_admin_by_email(session, email)
    if not user or not security.verify_password(password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return user
