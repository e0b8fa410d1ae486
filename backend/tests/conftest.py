import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Keep the module-level engine off Postgres while the suite imports the app.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from promo_ledger.db.session import get_session
from promo_ledger.main import app
from promo_ledger.models import Base
from promo_ledger.models.promo import DiscountType
from promo_ledger.models.user import AdminRole
from promo_ledger.schemas.promo import PromoCodeCreate
from promo_ledger.services import auth as auth_service

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
ADMIN_PASSWORD = "correct-horse-1"


def promo_payload(code: str = "SAVE10", **overrides) -> PromoCodeCreate:
    values = {
        "code": code,
        "discount_type": DiscountType.percentage,
        "discount_value": Decimal("10"),
        "start_date": NOW - timedelta(days=1),
        "end_date": NOW + timedelta(days=1),
        "usage_limit": 1,
    }
    values.update(overrides)
    return PromoCodeCreate(**values)


@pytest.fixture
def session_factory(tmp_path: Path) -> Generator[async_sessionmaker[AsyncSession], None, None]:
    # File-backed so concurrent sessions get their own connections.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        future=True,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def client(session_factory: async_sessionmaker[AsyncSession]) -> Generator[TestClient, None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


def create_admin_user(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    email: str = "owner@example.com",
    role: AdminRole = AdminRole.admin,
    is_active: bool = True,
) -> None:
    async def _create() -> None:
        async with session_factory() as session:
            user = await auth_service.create_admin(session, email=email, password=ADMIN_PASSWORD, name="Owner", role=role)
            if not is_active:
                user.is_active = False
                session.add(user)
                await session.commit()

    asyncio.run(_create())


def login_headers(client: TestClient, email: str = "owner@example.com") -> dict[str, str]:
    res = client.post("/api/v1/auth/login", json={"email": email, "password": ADMIN_PASSWORD})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}
