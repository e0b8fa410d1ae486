from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger.core.config import settings
from promo_ledger.core.errors import DuplicateCodeError, StoreTimeoutError, TransientStoreError
from promo_ledger.models.promo import PromoCode, PromoCodeEvent, PromoCodeEventType

T = TypeVar("T")


class PromoCodeStore(Protocol):
    """Persistence seam used by the ledger. Implementations keep no state between calls."""

    async def find_one(
        self, *, promo_id: UUID | None = None, code: str | None = None, include_deleted: bool = False
    ) -> PromoCode | None: ...

    async def conditional_increment(self, promo_id: UUID, *, delta: int = 1) -> int | None: ...

    async def insert(self, values: dict[str, Any], *, actor: str) -> PromoCode: ...

    async def list_all(self, *, include_deleted: bool = False) -> list[PromoCode]: ...

    async def set_active(self, promo_id: UUID, active: bool, *, actor: str) -> PromoCode | None: ...

    async def soft_delete(self, promo_id: UUID, *, actor: str, deleted_at: datetime) -> PromoCode | None: ...

    async def list_events(self, promo_id: UUID) -> list[PromoCodeEvent]: ...


class SqlAlchemyPromoCodeStore:
    """Promo code store over one ``AsyncSession``; every write commits before returning."""

    def __init__(self, session: AsyncSession, *, timeout_seconds: float | None = None) -> None:
        self.session = session
        self.timeout_seconds = settings.store_timeout_seconds if timeout_seconds is None else timeout_seconds

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError("Promo code store did not respond in time") from exc
        except (OperationalError, InterfaceError) as exc:
            raise TransientStoreError("Promo code store is unavailable") from exc
        except OSError as exc:
            raise TransientStoreError("Promo code store is unreachable") from exc

    async def find_one(
        self, *, promo_id: UUID | None = None, code: str | None = None, include_deleted: bool = False
    ) -> PromoCode | None:
        if promo_id is None and code is None:
            raise ValueError("find_one needs promo_id or code")
        query = select(PromoCode).execution_options(populate_existing=True)
        if promo_id is not None:
            query = query.where(PromoCode.id == promo_id)
        if code is not None:
            query = query.where(PromoCode.code == code)
        if not include_deleted:
            query = query.where(PromoCode.deleted_at.is_(None))

        async def _find() -> PromoCode | None:
            return (await self.session.execute(query)).scalars().first()

        return await self._call(_find)

    async def conditional_increment(self, promo_id: UUID, *, delta: int = 1) -> int | None:
        """Add ``delta`` to usage_count only while the result stays within usage_limit.

        One filtered UPDATE ... RETURNING; returns the new count, or None when the
        guard matched no row (cap reached, code deactivated or deleted).
        """
        if delta < 1:
            raise ValueError("delta must be a positive integer")
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                PromoCode.deleted_at.is_(None),
                PromoCode.is_active.is_(True),
                PromoCode.usage_count + delta <= PromoCode.usage_limit,
            )
            .values(usage_count=PromoCode.usage_count + delta)
            .returning(PromoCode.usage_count)
            .execution_options(synchronize_session=False)
        )

        async def _increment() -> int | None:
            new_count = (await self.session.execute(stmt)).scalar_one_or_none()
            await self.session.commit()
            return new_count

        return await self._call(_increment)

    async def insert(self, values: dict[str, Any], *, actor: str) -> PromoCode:
        async def _insert() -> PromoCode:
            promo = PromoCode(**values)
            self.session.add(promo)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                await self.session.rollback()
                raise DuplicateCodeError(values["code"]) from exc
            self.session.add(PromoCodeEvent(promo_code_id=promo.id, event=PromoCodeEventType.created, actor=actor))
            await self.session.commit()
            await self.session.refresh(promo)
            return promo

        return await self._call(_insert)

    async def list_all(self, *, include_deleted: bool = False) -> list[PromoCode]:
        query = select(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.code)
        if not include_deleted:
            query = query.where(PromoCode.deleted_at.is_(None))

        async def _list() -> list[PromoCode]:
            return list((await self.session.execute(query)).scalars().all())

        return await self._call(_list)

    async def _update_and_log(
        self,
        promo_id: UUID,
        values: dict[str, Any],
        *,
        event: PromoCodeEventType,
        actor: str,
    ) -> PromoCode | None:
        # Targeted column update; never rewrites usage_count.
        stmt = (
            update(PromoCode)
            .where(PromoCode.id == promo_id, PromoCode.deleted_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async def _update() -> bool:
            result = await self.session.execute(stmt)
            if not result.rowcount:
                await self.session.rollback()
                return False
            self.session.add(PromoCodeEvent(promo_code_id=promo_id, event=event, actor=actor))
            await self.session.commit()
            return True

        if not await self._call(_update):
            return None
        return await self.find_one(promo_id=promo_id, include_deleted=True)

    async def set_active(self, promo_id: UUID, active: bool, *, actor: str) -> PromoCode | None:
        event = PromoCodeEventType.activated if active else PromoCodeEventType.deactivated
        return await self._update_and_log(promo_id, {"is_active": active}, event=event, actor=actor)

    async def soft_delete(self, promo_id: UUID, *, actor: str, deleted_at: datetime) -> PromoCode | None:
        return await self._update_and_log(
            promo_id, {"deleted_at": deleted_at}, event=PromoCodeEventType.deleted, actor=actor
        )

    async def list_events(self, promo_id: UUID) -> list[PromoCodeEvent]:
        query = (
            select(PromoCodeEvent)
            .where(PromoCodeEvent.promo_code_id == promo_id)
            .order_by(PromoCodeEvent.created_at, PromoCodeEvent.id)
        )

        async def _events() -> list[PromoCodeEvent]:
            return list((await self.session.execute(query)).scalars().all())

        return await self._call(_events)
