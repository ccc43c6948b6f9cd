"""Background task scheduler: runs the daily overdue sweep.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external dependencies (no Celery, no APScheduler); just a simple
asyncio.sleep loop that fires once per day at the configured hour.

Configuration (.env):
    OVERDUE_SWEEP_ENABLED=true
    OVERDUE_SWEEP_HOUR=1      (run at 01:00 UTC daily)

The sweep only moves PENDING invoices whose due date has passed to
OVERDUE; every other status change happens inside ledger mutations.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone

from fastapi import FastAPI

from app.config import settings
from app.database import async_session
from app.middleware.exceptions import LedgerConflict
from app.services import invoicing
from app.tenancy import OrganizationContext
from app.utils.cache import close_redis, invalidate_ledger

logger = logging.getLogger("billbook.scheduler")


async def run_overdue_sweep(today: date | None = None) -> int:
    """One sweep across all organizations, committing each invoice on its own.

    A lost race on one invoice is logged and skipped; the concurrent
    mutation has already rerun the state machine for it.
    """
    today = today or datetime.now(timezone.utc).date()
    logger.info("Starting overdue sweep for %s", today.isoformat())

    async with async_session() as db:
        candidates = await invoicing.overdue_candidates(db, today)

    changed = 0
    for invoice_id, organization_id in candidates:
        ctx = OrganizationContext(organization_id=organization_id)
        async with async_session() as db:
            try:
                if not await invoicing.mark_overdue(db, ctx, invoice_id, today):
                    continue
                await db.commit()
            except LedgerConflict:
                await db.rollback()
                logger.warning(
                    "Skipped invoice %s in overdue sweep: modified concurrently", invoice_id,
                    extra={"invoice_id": invoice_id, "organization_id": organization_id},
                )
                continue
            except Exception:
                await db.rollback()
                raise
        await invalidate_ledger(organization_id, invoice_id)
        changed += 1

    logger.info("Overdue sweep complete: %d invoice(s) changed", changed)
    return changed


def seconds_until(target_hour: int, now: datetime) -> float:
    """Seconds from ``now`` until the next ``target_hour``:00 UTC."""
    next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop() -> None:
    while True:
        wait_seconds = seconds_until(settings.overdue_sweep_hour, datetime.now(timezone.utc))
        logger.info("Next overdue sweep in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_overdue_sweep()
        except Exception:
            logger.exception("Unhandled error in overdue sweep")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the scheduler on startup, cancel on shutdown."""
    task = None
    if settings.overdue_sweep_enabled:
        task = asyncio.create_task(_scheduler_loop())
        logger.info("Overdue sweep scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Overdue sweep scheduler stopped")
        await close_redis()
