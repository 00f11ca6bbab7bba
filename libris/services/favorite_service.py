"""Favorite books service."""

import logging
from typing import Optional
from uuid import UUID, uuid4

from libris.domain.entities import Book, Favorite, Identity
from libris.domain.errors import NotFound
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IBookRepository, IFavoriteRepository

logger = logging.getLogger(__name__)


class FavoriteService:

    def __init__(self, favorite_repository: IFavoriteRepository, book_repository: IBookRepository):
        self.favorite_repository = favorite_repository
        self.book_repository = book_repository

    async def toggle(self, identity: Optional[Identity], book_id: UUID) -> bool:
        """Flip the favorite mark; return whether the book is now a favorite."""
        authorize(identity, Capability.FAVORITE)
        if await self.favorite_repository.remove(identity.user_id, book_id):
            logger.info("User %s unfavorited book %s", identity.user_id, book_id)
            return False

        if not await self.book_repository.get_by_id(book_id):
            raise NotFound("Book not found")
        await self.favorite_repository.add(
            Favorite(id=uuid4(), user_id=identity.user_id, book_id=book_id)
        )
        logger.info("User %s favorited book %s", identity.user_id, book_id)
        return True

    async def is_favorite(self, identity: Optional[Identity], book_id: UUID) -> bool:
        authorize(identity, Capability.FAVORITE)
        return await self.favorite_repository.exists(identity.user_id, book_id)

    async def list_favorites(self, identity: Optional[Identity]) -> list[Book]:
        authorize(identity, Capability.FAVORITE)
        favorites = await self.favorite_repository.list_for_user(identity.user_id)
        books = []
        for favorite in favorites:
            book = await self.book_repository.get_by_id(favorite.book_id)
            if book:
                books.append(book)
        return books
