"""Management CLI for ledger operations.

Usage:
    python -m app.cli sweep-overdue          # Mark past-due PENDING invoices OVERDUE
    python -m app.cli counters <org_id>      # Show an organization's sequence counters
"""

import asyncio
import sys

from sqlalchemy import select

from app.database import async_session, engine
from app.models.sequence_counter import SequenceCounter
from app.services.scheduler import run_overdue_sweep


async def _sweep() -> None:
    try:
        changed = await run_overdue_sweep()
    finally:
        await engine.dispose()
    print(f"{changed} invoice(s) marked overdue")


async def _counters(organization_id: str) -> None:
    try:
        async with async_session() as db:
            result = await db.execute(
                select(SequenceCounter)
                .where(SequenceCounter.organization_id == organization_id)
                .order_by(SequenceCounter.gstin_key, SequenceCounter.financial_year)
            )
            counters = result.scalars().all()
    finally:
        await engine.dispose()

    for c in counters:
        print(f"  {c.gstin_key:<20} {c.financial_year:<10} next={c.next_number}")
    print(f"\n{len(counters)} counter(s)")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "sweep-overdue":
        asyncio.run(_sweep())
    elif cmd == "counters" and len(sys.argv) > 2:
        asyncio.run(_counters(sys.argv[2]))
    else:
        print("Usage: python -m app.cli [sweep-overdue|counters <org_id>]")
