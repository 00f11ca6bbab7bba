"""Celery task wrappers for inventory reconciliation.

Thin synchronous wrappers around the coroutines in
``libris.services.background_tasks``.

Retry policy:
  - max_retries=3   additional attempts on failure
  - countdown=60    seconds before each retry
"""

import asyncio
import logging
from typing import Optional

from libris.infrastructure.tasks.celery_app import celery_app
from libris.services.background_tasks import reconcile_inventory_task

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="inventory.reconcile", max_retries=3)
def reconcile_inventory(self, book_id: Optional[str] = None) -> dict:
    """Celery task: recompute available copies from active borrowings."""
    try:
        return asyncio.run(reconcile_inventory_task(book_id))
    except Exception as exc:
        logger.warning(
            "reconcile_inventory failed (attempt %d/%d): %s",
            self.request.retries + 1,
            self.max_retries + 1,
            exc,
        )
        raise self.retry(exc=exc, countdown=60)
