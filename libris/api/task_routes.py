"""Task status API route.

  GET /tasks/{task_id}

Possible ``status`` values mirror Celery's task state machine:
  PENDING  task queued, not yet picked up by a worker
  STARTED  worker has begun execution
  SUCCESS  task completed (``result`` holds the reconciliation report)
  FAILURE  task raised an unhandled exception (``error`` field populated)
  RETRY    task failed and is scheduled for a retry attempt
"""

import logging

from celery.result import AsyncResult
from fastapi import APIRouter

from libris.api.schemas import TaskStatusResponse
from libris.core.dependencies import CurrentIdentity
from libris.domain.policies import Capability, authorize
from libris.infrastructure.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(task_id: str, identity: CurrentIdentity) -> TaskStatusResponse:
    """Get the current state of a background task."""
    authorize(identity, Capability.RUN_RECONCILIATION)
    result = AsyncResult(task_id, app=celery_app)

    error: str | None = None
    payload = None
    if result.state == "FAILURE":
        error = str(result.result)
    elif result.state == "SUCCESS":
        payload = result.result

    logger.debug("Task %s state: %s", task_id, result.state)

    return TaskStatusResponse(task_id=task_id, status=result.state, result=payload, error=error)
