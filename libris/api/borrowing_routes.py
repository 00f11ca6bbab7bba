"""Borrowing API routes.

  POST /borrowings                    borrow a copy
  GET  /borrowings                    own borrowings (staff: anyone's)
  POST /borrowings/{id}/return        give the copy back
  POST /borrowings/{id}/validate      staff sign-off, required before extending
  POST /borrowings/{id}/extend        push the due date by one extension period
  POST /borrowings/{id}/settle-fine   staff: mark the fine as paid
"""

import logging
from dataclasses import asdict
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from libris.api.schemas import BorrowingCreate, BorrowingListResponse, BorrowingResponse
from libris.core.dependencies import CurrentIdentity, get_borrowing_service
from libris.domain.entities import Borrowing, BorrowingStatus
from libris.domain.services import IBorrowingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/borrowings", tags=["borrowings"])

BorrowingServiceDep = Annotated[IBorrowingService, Depends(get_borrowing_service)]


def _to_response(borrowing: Borrowing, service: IBorrowingService) -> BorrowingResponse:
    return BorrowingResponse(
        **asdict(borrowing),
        accrued_fine=float(service.accrued_fine(borrowing)),
        is_overdue=service.is_overdue(borrowing),
    )


@router.post("/", response_model=BorrowingResponse, status_code=status.HTTP_201_CREATED)
async def create_borrowing(
    body: BorrowingCreate,
    identity: CurrentIdentity,
    service: BorrowingServiceDep,
) -> BorrowingResponse:
    borrowing = await service.create_borrowing(identity, body.book_id)
    return _to_response(borrowing, service)


@router.get("/", response_model=BorrowingListResponse)
async def list_borrowings(
    identity: CurrentIdentity,
    service: BorrowingServiceDep,
    status_filter: Annotated[Optional[BorrowingStatus], Query(alias="status")] = None,
    user_id: Optional[UUID] = None,
    overdue: bool = False,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> BorrowingListResponse:
    items, total = await service.list_borrowings(
        identity,
        status=status_filter,
        user_id=user_id,
        overdue_only=overdue,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return BorrowingListResponse(
        borrowings=[_to_response(b, service) for b in items], total=total, page=page, limit=limit
    )


@router.get("/{borrowing_id}", response_model=BorrowingResponse)
async def get_borrowing(
    borrowing_id: UUID, identity: CurrentIdentity, service: BorrowingServiceDep
) -> BorrowingResponse:
    return _to_response(await service.get_borrowing(identity, borrowing_id), service)


@router.post("/{borrowing_id}/return", response_model=BorrowingResponse)
async def return_borrowing(
    borrowing_id: UUID, identity: CurrentIdentity, service: BorrowingServiceDep
) -> BorrowingResponse:
    """Return the copy.  Any fine is fixed at this moment."""
    return _to_response(await service.return_borrowing(identity, borrowing_id), service)


@router.post("/{borrowing_id}/validate", response_model=BorrowingResponse)
async def validate_borrowing(
    borrowing_id: UUID, identity: CurrentIdentity, service: BorrowingServiceDep
) -> BorrowingResponse:
    return _to_response(await service.validate_borrowing(identity, borrowing_id), service)


@router.post("/{borrowing_id}/extend", response_model=BorrowingResponse)
async def extend_borrowing(
    borrowing_id: UUID, identity: CurrentIdentity, service: BorrowingServiceDep
) -> BorrowingResponse:
    return _to_response(await service.extend_borrowing(identity, borrowing_id), service)


@router.post("/{borrowing_id}/settle-fine", response_model=BorrowingResponse)
async def settle_fine(
    borrowing_id: UUID, identity: CurrentIdentity, service: BorrowingServiceDep
) -> BorrowingResponse:
    return _to_response(await service.settle_fine(identity, borrowing_id), service)
