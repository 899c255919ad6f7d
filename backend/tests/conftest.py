"""Pytest configuration and fixtures for GrowerPay tests.

Every test gets its own in-memory SQLite database (aiosqlite), so the
services may commit freely.  Seed data:

  payment types  ADV1, ADV2, ADV3, FINAL
  growers        G001 (CAD), G002 (CAD, pay group B), G003 (on hold)
  product        BL, marketing deduction 0.02/lb
  schedule       BL/FR from 2025-01-01, CAD level 1:
                 ADV1 1.00, ADV2 1.20, ADV3 1.10
                 time premium 0.05/lb for weigh-ins at or before 10:00
  receipts       R-1001 100 lb 09:00 and R-1002 200 lb 14:00 (G001)
                 R-2001 50 lb, no time (G002)
                 R-3001 10 lb (G003)
"""

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import create_access_token
from app.auth.permissions import resolve_permissions
from app.database import Base, get_db
from app.main import app
from app.models import (
    Grower, PaymentType, PriceSchedule, PriceScheduleDetail, Product, Receipt,
)
from app.utils.activity import Actor

CROP_YEAR = 2025
RECEIPT_DATE = date(2025, 7, 10)
CUTOFF = date(2025, 7, 31)
PAYMENT_DATE = date(2025, 8, 5)


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    # pysqlite defers BEGIN on its own; take it over so SAVEPOINT works
    @event.listens_for(engine.sync_engine, "connect")
    def _no_autobegin(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency pointed at the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Auth Fixtures ────────────────────────────────────────────────

@pytest.fixture
def actor() -> Actor:
    return Actor(user_id="user-1", user_name="Test Accountant")


def _headers(role: str) -> dict:
    token = create_access_token(
        user_id="user-1",
        name="Test User",
        role=role,
        permissions=resolve_permissions(role),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> dict:
    """Accountant token: read and write on financials and advances."""
    return _headers("accountant")


@pytest.fixture
def viewer_headers() -> dict:
    return _headers("viewer")


# ── Test Data Fixtures ───────────────────────────────────────────

@dataclass
class Seed:
    schedule_id: int
    growers: dict[str, Grower]
    receipts: dict[str, Receipt]
    payment_types: dict[str, PaymentType]


async def add_receipt(
    db: AsyncSession,
    number: str,
    grower: Grower,
    weight: str,
    *,
    at: time | None = None,
    product: str = "BL",
    process: str = "FR",
    received: date = RECEIPT_DATE,
    grade: int = 1,
) -> Receipt:
    receipt = Receipt(
        receipt_number=number,
        grower_id=grower.id,
        product_code=product,
        process_code=process,
        receipt_date=received,
        receipt_time=at,
        net_weight=Decimal(weight),
        grade=grade,
        crop_year=received.year,
    )
    db.add(receipt)
    await db.flush()
    return receipt


@pytest_asyncio.fixture
async def payment_types(db_session: AsyncSession) -> dict[str, PaymentType]:
    types = [
        PaymentType(id=1, type_code="ADV1", type_name="First Advance", sequence_number=1),
        PaymentType(id=2, type_code="ADV2", type_name="Second Advance", sequence_number=2),
        PaymentType(id=3, type_code="ADV3", type_name="Third Advance", sequence_number=3),
        PaymentType(id=4, type_code="FINAL", type_name="Final Payment", sequence_number=4, is_final=True),
    ]
    db_session.add_all(types)
    await db_session.commit()
    return {t.type_code: t for t in types}


@pytest_asyncio.fixture
async def seed(db_session: AsyncSession, payment_types) -> Seed:
    growers = {
        "G001": Grower(grower_number="G001", name="Fraser Farms", currency="CAD", price_level=1),
        "G002": Grower(grower_number="G002", name="Delta Berries", currency="CAD", price_level=1, pay_group="B"),
        "G003": Grower(grower_number="G003", name="Held Acres", currency="CAD", price_level=1, on_hold=True),
    }
    db_session.add_all(growers.values())
    db_session.add(Product(code="BL", description="Blueberries", marketing_deduction_rate=Decimal("0.02")))

    schedule = PriceSchedule(
        product_code="BL",
        process_code="FR",
        effective_from=date(2025, 1, 1),
        time_premium_enabled=True,
        cad_premium_amount=Decimal("0.05"),
        usd_premium_amount=Decimal("0.04"),
        premium_cutoff_time=time(10, 0),
    )
    db_session.add(schedule)
    await db_session.flush()

    for round_number, price in ((1, "1.00"), (2, "1.20"), (3, "1.10")):
        db_session.add(PriceScheduleDetail(
            price_schedule_id=schedule.id,
            advance_number=round_number,
            currency="CAD",
            price_level=1,
            grade=None,
            price_per_unit=Decimal(price),
        ))

    receipts = {
        "R-1001": await add_receipt(db_session, "R-1001", growers["G001"], "100", at=time(9, 0)),
        "R-1002": await add_receipt(db_session, "R-1002", growers["G001"], "200", at=time(14, 0)),
        "R-2001": await add_receipt(db_session, "R-2001", growers["G002"], "50"),
        "R-3001": await add_receipt(db_session, "R-3001", growers["G003"], "10"),
    }
    await db_session.commit()
    return Seed(
        schedule_id=schedule.id,
        growers=growers,
        receipts=receipts,
        payment_types=payment_types,
    )


@pytest.fixture
def make_receipt(db_session: AsyncSession):
    async def _make(number: str, grower: Grower, weight: str, **kwargs) -> Receipt:
        return await add_receipt(db_session, number, grower, weight, **kwargs)

    return _make


@pytest.fixture
def run_round(db_session: AsyncSession, actor: Actor):
    """Actual advance run over the seed data; returns the PaymentRunResult."""
    from app.services.payment_run import RunParameters, process_actual_run

    async def _run(round_number: int, **overrides):
        params = RunParameters(
            round_number=round_number,
            payment_date=PAYMENT_DATE,
            cutoff_date=CUTOFF,
            crop_year=CROP_YEAR,
            **overrides,
        )
        return await process_actual_run(db_session, actor, params)

    return _run


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
