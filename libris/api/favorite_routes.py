"""Favorites API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from libris.api.schemas import BookResponse
from libris.core.dependencies import CurrentIdentity, get_favorite_service
from libris.services.favorite_service import FavoriteService

router = APIRouter(prefix="/favorites", tags=["favorites"])


@router.get("/", response_model=list[BookResponse])
async def list_favorites(
    identity: CurrentIdentity,
    favorite_service: Annotated[FavoriteService, Depends(get_favorite_service)],
) -> list[BookResponse]:
    books = await favorite_service.list_favorites(identity)
    return [BookResponse.model_validate(b) for b in books]
