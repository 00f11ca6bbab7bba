"""Async implementations of background work.

These coroutines contain the logic executed by Celery workers.  Each one
opens its own DB session from the worker engine, independent of any request
lifecycle.  The task wrappers in ``libris.infrastructure.tasks`` call them
with ``asyncio.run()``.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from libris.core.config import settings
from libris.infrastructure.database.connection import worker_session_maker as async_session_maker
from libris.infrastructure.database.repository import BookRepository, BorrowingRepository
from libris.services.inventory_service import InventoryLedger

logger = logging.getLogger(__name__)


async def reconcile_inventory_task(book_id: Optional[str] = None) -> dict:
    """Restore ``available_copies`` from active borrowings.

    With *book_id* only that title is checked; otherwise every book is.
    """
    logger.info("BG-TASK: reconciling inventory (%s)", book_id or "all books")
    async with async_session_maker() as session:
        ledger = InventoryLedger(
            BookRepository(session),
            BorrowingRepository(session),
            settle_window=timedelta(seconds=settings.reconciliation_settle_seconds),
        )
        if book_id:
            corrected = await ledger.reconcile(UUID(book_id))
            return {"checked": 1, "corrected": [book_id] if corrected else [], "skipped": []}
        report = await ledger.reconcile_all()
        return report.as_dict()
