"""Tests for the sequence allocator and invoice numbering."""

import asyncio
import os
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.middleware.exceptions import (
    DuplicateInvoiceNumber,
    InvalidInvoiceNumber,
    SequenceExhaustion,
)
from app.models import Organization, SequenceCounter
from app.services import invoicing, sequence
from tests.conftest import ORG_GSTIN, TODAY, install_sqlite_transactions, invoice_payload

FY_DATE = date(2024, 6, 1)


@pytest.mark.asyncio
class TestAllocate:

    async def test_sequential_allocation(self, db_session, organization):
        numbers = [
            await sequence.allocate(db_session, organization.id, ORG_GSTIN, "2024-25")
            for _ in range(3)
        ]
        assert numbers == [1, 2, 3]

    async def test_keys_are_independent(self, db_session, organization):
        assert await sequence.allocate(db_session, organization.id, ORG_GSTIN, "2024-25") == 1
        assert await sequence.allocate(db_session, organization.id, ORG_GSTIN, "2025-26") == 1
        assert await sequence.allocate(db_session, organization.id, "DRAFT", "2024-25") == 1
        assert await sequence.allocate(db_session, organization.id, ORG_GSTIN, "2024-25") == 2

    async def test_custom_start(self, db_session, organization):
        assert await sequence.allocate(db_session, organization.id, "K", "2024-25", start=100) == 100
        assert await sequence.allocate(db_session, organization.id, "K", "2024-25", start=100) == 101

    async def test_peek_does_not_consume(self, db_session, organization):
        assert await sequence.peek(db_session, organization.id, "K", "2024-25") == 1
        await sequence.allocate(db_session, organization.id, "K", "2024-25")
        assert await sequence.peek(db_session, organization.id, "K", "2024-25") == 2
        assert await sequence.allocate(db_session, organization.id, "K", "2024-25") == 2

    async def test_exhaustion(self, db_session, organization):
        assert await sequence.allocate(db_session, organization.id, "K", "FY", max_value=2) == 1
        assert await sequence.allocate(db_session, organization.id, "K", "FY", max_value=2) == 2
        with pytest.raises(SequenceExhaustion):
            await sequence.allocate(db_session, organization.id, "K", "FY", max_value=2)

    async def test_counter_row_tracks_next_number(self, db_session, organization):
        for _ in range(3):
            await sequence.allocate(db_session, organization.id, ORG_GSTIN, "2024-25")
        await db_session.commit()

        result = await db_session.execute(
            select(SequenceCounter.next_number).where(
                SequenceCounter.organization_id == organization.id,
                SequenceCounter.gstin_key == ORG_GSTIN,
            )
        )
        assert result.scalar_one() == 4


@pytest.mark.asyncio
class TestInvoiceNumbers:

    async def test_auto_numbers_render_template(self, db_session, organization):
        numbers = [
            await sequence.allocate_final(db_session, organization, None, FY_DATE)
            for _ in range(3)
        ]
        assert numbers == ["INV-2024-25-00001", "INV-2024-25-00002", "INV-2024-25-00003"]

    async def test_financial_year_resets_sequence(self, db_session, organization):
        first = await sequence.allocate_final(db_session, organization, None, date(2025, 3, 31))
        second = await sequence.allocate_final(db_session, organization, None, date(2025, 4, 1))
        assert first == "INV-2024-25-00001"
        assert second == "INV-2025-26-00001"

    async def test_gstin_profiles_number_independently(self, db_session, organization, karnataka_profile):
        mh = await sequence.allocate_final(db_session, organization, None, FY_DATE)
        ka = await sequence.allocate_final(db_session, organization, karnataka_profile, FY_DATE)
        ka2 = await sequence.allocate_final(db_session, organization, karnataka_profile, FY_DATE)

        assert mh == "INV-2024-25-00001"
        assert ka == "KA-2024-25-00001"
        assert ka2 == "KA-2024-25-00002"

    async def test_organization_without_gstin_uses_default_stream(self, db_session):
        org = Organization(name="Unregistered Co", state_code="27")
        db_session.add(org)
        await db_session.flush()

        assert await sequence.allocate_final(db_session, org, None, FY_DATE) == "INV-2024-25-00001"
        assert await sequence.peek(db_session, org.id, sequence.DEFAULT_KEY, "2024-25") == 2

    async def test_auto_mode_rejects_supplied_number(self, db_session, organization):
        with pytest.raises(InvalidInvoiceNumber):
            await sequence.allocate_final(db_session, organization, None, FY_DATE, manual_number="X-1")

    async def test_manual_mode(self, db_session, organization):
        organization.invoice_number_mode = "MANUAL"
        number = await sequence.allocate_final(
            db_session, organization, None, FY_DATE, manual_number=" MH/001 ",
        )
        assert number == "MH/001"

    async def test_manual_mode_requires_number(self, db_session, organization):
        organization.invoice_number_mode = "MANUAL"
        with pytest.raises(InvalidInvoiceNumber):
            await sequence.allocate_final(db_session, organization, None, FY_DATE)

    async def test_manual_duplicate_rejected(self, db_session, ctx, organization, local_client):
        organization.invoice_number_mode = "MANUAL"
        draft = await invoicing.create_draft(db_session, ctx, invoice_payload(local_client.id))
        await invoicing.finalize_invoice(db_session, ctx, draft.id, manual_number="A/1", today=TODAY)

        with pytest.raises(DuplicateInvoiceNumber):
            await sequence.allocate_final(db_session, organization, None, FY_DATE, manual_number="A/1")

        # The invoice that holds the number may re-check it
        number = await sequence.allocate_final(
            db_session, organization, None, FY_DATE, manual_number="A/1", invoice_id=draft.id,
        )
        assert number == "A/1"

    async def test_manual_number_over_max_length_rejected(self, db_session, organization):
        organization.invoice_number_mode = "MANUAL"
        with pytest.raises(InvalidInvoiceNumber):
            await sequence.allocate_final(
                db_session, organization, None, FY_DATE, manual_number="INV-2024-25-00001",
            )

    async def test_preview_matches_next_allocation(self, db_session, organization):
        preview = await sequence.preview_next(db_session, organization, None, FY_DATE)
        allocated = await sequence.allocate_final(db_session, organization, None, FY_DATE)
        assert preview == allocated == "INV-2024-25-00001"
        assert await sequence.preview_next(db_session, organization, None, FY_DATE) == "INV-2024-25-00002"

    async def test_preview_in_manual_mode(self, db_session, organization):
        organization.invoice_number_mode = "MANUAL"
        assert await sequence.preview_next(db_session, organization, None, FY_DATE) is None

    async def test_draft_and_payment_numbers(self, db_session, organization):
        assert await sequence.allocate_draft(db_session, organization, FY_DATE) == "DRAFT-2024-25-00001"
        assert await sequence.allocate_draft(db_session, organization, FY_DATE) == "DRAFT-2024-25-00002"
        assert await sequence.allocate_payment_number(db_session, organization.id) == "PAY-00001"
        assert await sequence.allocate_payment_number(db_session, organization.id) == "PAY-00002"


@pytest.mark.slow
@pytest.mark.integration
@pytest.mark.asyncio
class TestConcurrentAllocation:
    """Concurrent allocators on a shared file database never collide."""

    async def test_no_duplicates_no_gaps(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'counters.db'}",
            connect_args={"timeout": 30},
        )
        # Writers serialize on the database lock, as they would on the row lock
        install_sqlite_transactions(engine, begin="BEGIN IMMEDIATE")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as db:
            org = Organization(name="Concurrent Co", gstin=ORG_GSTIN, state_code="27")
            db.add(org)
            await db.commit()
            org_id = org.id

        async def worker(count: int) -> list[int]:
            taken = []
            for _ in range(count):
                async with factory() as db:
                    taken.append(await sequence.allocate(db, org_id, ORG_GSTIN, "2024-25"))
                    await db.commit()
            return taken

        try:
            results = await asyncio.gather(*(worker(5) for _ in range(4)))
        finally:
            await engine.dispose()

        allocated = sorted(n for batch in results for n in batch)
        assert allocated == list(range(1, 21))


@pytest.mark.slow
@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.skipif(not os.environ.get("TEST_DATABASE_URL"), reason="TEST_DATABASE_URL not set")
class TestConcurrentAllocationPostgres:
    """Same race on PostgreSQL, where allocators contend on the counter row."""

    async def test_no_duplicates_no_gaps(self):
        engine = create_async_engine(os.environ["TEST_DATABASE_URL"])
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as db:
            org = Organization(name="Concurrent Co", gstin=ORG_GSTIN, state_code="27")
            db.add(org)
            await db.commit()
            org_id = org.id

        async def worker(count: int) -> list[int]:
            taken = []
            for _ in range(count):
                async with factory() as db:
                    taken.append(await sequence.allocate(db, org_id, ORG_GSTIN, "2024-25"))
                    await db.commit()
            return taken

        try:
            results = await asyncio.gather(*(worker(10) for _ in range(8)))
        finally:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            await engine.dispose()

        allocated = sorted(n for batch in results for n in batch)
        assert allocated == list(range(1, 81))
