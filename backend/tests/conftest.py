"""Pytest configuration and fixtures for Billbook tests.

Service tests run against an in-memory SQLite database (aiosqlite) with
the schema created from the models.  SQLite needs explicit BEGIN handling
for SAVEPOINTs to work, which the sequence allocator relies on.
"""

import os

# Settings are read at import time
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("OVERDUE_SWEEP_ENABLED", "false")
os.environ.setdefault("GATEWAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("GATEWAY_KEY_SECRET", "rzp_test_secret")

from datetime import date
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
from app.models import Client, GstinProfile, Organization
from app.schemas.invoice import InvoiceCreate, LineItemIn
from app.services import invoicing
from app.tenancy import OrganizationContext

ORG_GSTIN = "27AAAAA0000A1Z5"
MH_CLIENT_GSTIN = "27BBBBB1111B1Z5"
KA_CLIENT_GSTIN = "29CCCCC2222C1Z5"
KA_PROFILE_GSTIN = "29AAAAA0000A1Z7"

INVOICE_DATE = date(2024, 6, 1)
DUE_DATE = date(2024, 7, 1)
# Before the due date, so new invoices are PENDING rather than OVERDUE
TODAY = date(2024, 6, 15)


def install_sqlite_transactions(engine, begin: str = "BEGIN") -> None:
    """Let SQLAlchemy own transaction boundaries on pysqlite/aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql(begin)


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    install_sqlite_transactions(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(
        name="Acme Traders",
        gstin=ORG_GSTIN,
        state_code="27",
        invoice_number_mode="AUTO",
        invoice_number_format="{PREFIX}-{FY}-{SEQ}",
        invoice_prefix="INV",
        sequence_start=1,
        sequence_padding=5,
        financial_year_start_month=4,
    )
    db_session.add(org)
    await db_session.commit()
    return org


@pytest_asyncio.fixture
async def karnataka_profile(db_session: AsyncSession, organization: Organization) -> GstinProfile:
    profile = GstinProfile(
        organization_id=organization.id,
        gstin=KA_PROFILE_GSTIN,
        state_code="29",
        state_name="Karnataka",
        invoice_prefix="KA",
    )
    db_session.add(profile)
    await db_session.commit()
    return profile


@pytest_asyncio.fixture
async def local_client(db_session: AsyncSession, organization: Organization) -> Client:
    """Registered buyer in Maharashtra (same state as the organization)."""
    client = Client(
        organization_id=organization.id,
        name="Local Buyer Pvt Ltd",
        gstin=MH_CLIENT_GSTIN,
        gst_treatment="REGULAR",
    )
    db_session.add(client)
    await db_session.commit()
    return client


@pytest_asyncio.fixture
async def remote_client(db_session: AsyncSession, organization: Organization) -> Client:
    """Registered buyer in Karnataka."""
    client = Client(
        organization_id=organization.id,
        name="Bengaluru Buyer LLP",
        gstin=KA_CLIENT_GSTIN,
        gst_treatment="REGULAR",
    )
    db_session.add(client)
    await db_session.commit()
    return client


@pytest.fixture
def ctx(organization: Organization) -> OrganizationContext:
    return OrganizationContext(
        organization_id=organization.id,
        user_id="user-1",
        capabilities=frozenset(resolve_permissions("owner")),
    )


def invoice_payload(client_id: str, rate: str = "1000.00", quantity: str = "10", **overrides) -> InvoiceCreate:
    """Ten units at 1000.00, 18% GST → taxable 10000.00, total 11800.00."""
    data = {
        "client_id": client_id,
        "invoice_date": INVOICE_DATE,
        "due_date": DUE_DATE,
        "line_items": [
            LineItemIn(
                description="Consulting services",
                hsn_code="9983",
                quantity=Decimal(quantity),
                rate=Decimal(rate),
                tax_rate=Decimal("18"),
            )
        ],
    }
    data.update(overrides)
    return InvoiceCreate(**data)


@pytest_asyncio.fixture
async def open_invoice(db_session: AsyncSession, ctx: OrganizationContext, local_client: Client):
    """A finalized, unpaid 11800.00 invoice."""
    draft = await invoicing.create_draft(db_session, ctx, invoice_payload(local_client.id))
    invoice = await invoicing.finalize_invoice(db_session, ctx, draft.id, today=TODAY)
    await db_session.commit()
    return invoice


# ── API client ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client; each request gets its own session, like get_db."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def make_token(organization_id: str, role: str = "owner", permissions: list[str] | None = None) -> str:
    return create_access_token(
        user_id="user-1",
        organization_id=organization_id,
        role=role,
        permissions=resolve_permissions(role) if permissions is None else permissions,
    )


@pytest.fixture
def auth_headers(organization: Organization) -> dict:
    return {"Authorization": f"Bearer {make_token(organization.id)}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "cache: Ledger cache tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
