"""Reading log routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from libris.api.schemas import ReadingSessionCreate, ReadingSessionResponse, ReadingStatsResponse
from libris.core.dependencies import CurrentIdentity, get_reading_service
from libris.services.reading_service import ReadingService

router = APIRouter(prefix="/reading", tags=["reading"])

ReadingServiceDep = Annotated[ReadingService, Depends(get_reading_service)]


@router.post(
    "/sessions", response_model=ReadingSessionResponse, status_code=status.HTTP_201_CREATED
)
async def log_session(
    body: ReadingSessionCreate, identity: CurrentIdentity, service: ReadingServiceDep
) -> ReadingSessionResponse:
    reading = await service.log_session(identity, **body.model_dump())
    return ReadingSessionResponse.model_validate(reading)


@router.get("/stats", response_model=ReadingStatsResponse)
async def reading_stats(identity: CurrentIdentity, service: ReadingServiceDep) -> ReadingStatsResponse:
    stats = await service.reading_stats(identity)
    return ReadingStatsResponse(
        total_sessions=stats["total_sessions"],
        total_minutes=stats["total_minutes"],
        total_pages=stats["total_pages"],
        recent_sessions=[ReadingSessionResponse.model_validate(s) for s in stats["recent_sessions"]],
    )
