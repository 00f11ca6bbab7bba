"""Staff routes: dashboard, users and roles, inventory reconciliation."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from libris.api.schemas import (
    DashboardResponse,
    PopularBook,
    ProfileResponse,
    RoleUpdateRequest,
    TaskDispatchResponse,
    UserResponse,
)
from libris.core.dependencies import (
    CurrentIdentity,
    get_auth_service,
    get_inventory_ledger,
    get_statistics_service,
)
from libris.domain.policies import Capability, authorize
from libris.infrastructure.tasks.reconciliation_tasks import reconcile_inventory
from libris.services.auth_service import AuthService
from libris.services.inventory_service import InventoryLedger
from libris.services.statistics_service import StatisticsService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats", response_model=DashboardResponse)
async def dashboard(
    identity: CurrentIdentity,
    statistics_service: Annotated[StatisticsService, Depends(get_statistics_service)],
) -> DashboardResponse:
    """Library figures; members get the same view scoped to themselves."""
    stats = await statistics_service.dashboard(identity)
    return DashboardResponse(
        **{**stats, "popular_books": [PopularBook(**p) for p in stats["popular_books"]]}
    )


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    identity: CurrentIdentity,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[UserResponse]:
    users = await auth_service.list_users(identity, skip, limit)
    return [
        UserResponse(**ProfileResponse.model_validate(profile).model_dump(), role=role)
        for profile, role in users
    ]


@router.put("/users/{user_id}/role")
async def set_role(
    user_id: UUID,
    body: RoleUpdateRequest,
    identity: CurrentIdentity,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict:
    role = await auth_service.set_role(identity, user_id, body.role)
    return {"user_id": str(user_id), "role": role.value}


@router.post("/reconcile", response_model=dict)
async def reconcile_now(
    identity: CurrentIdentity,
    ledger: Annotated[InventoryLedger, Depends(get_inventory_ledger)],
) -> dict:
    """Run the inventory sweep inside this request and report what changed."""
    report = await ledger.run_reconciliation(identity)
    return report.as_dict()


@router.post(
    "/reconcile/async",
    response_model=TaskDispatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reconcile_in_background(identity: CurrentIdentity) -> TaskDispatchResponse:
    """Queue the inventory sweep on the Celery workers; poll ``/tasks/{task_id}``."""
    authorize(identity, Capability.RUN_RECONCILIATION)
    task = reconcile_inventory.delay()
    logger.info("Reconciliation task %s dispatched by %s", task.id, identity.user_id)
    return TaskDispatchResponse(task_id=task.id)
