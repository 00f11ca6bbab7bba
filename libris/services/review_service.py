"""Review service with business logic."""

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from libris.domain.entities import Identity, Review
from libris.domain.errors import NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IBookRepository, IProfileRepository, IReviewRepository

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


class ReviewService:
    """One review per member per book; resubmitting edits the existing one."""

    def __init__(
        self,
        review_repository: IReviewRepository,
        book_repository: IBookRepository,
        profile_repository: IProfileRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.review_repository = review_repository
        self.book_repository = book_repository
        self.profile_repository = profile_repository
        self.clock = clock

    async def submit_review(
        self,
        identity: Optional[Identity],
        book_id: UUID,
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        authorize(identity, Capability.REVIEW)
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be a whole number from 1 to 5")
        comment = (comment or "").strip() or None
        if comment and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comments are limited to {MAX_COMMENT_LENGTH} characters")
        if not await self.book_repository.get_by_id(book_id):
            raise NotFound("Book not found")

        now = self.clock()
        existing = await self.review_repository.get_by_user_and_book(identity.user_id, book_id)
        if existing:
            existing.rating = rating
            existing.comment = comment
            existing.updated_at = now
            review = await self.review_repository.update(existing)
            logger.info("Review %s updated for book %s", review.id, book_id)
        else:
            review = await self.review_repository.create(
                Review(
                    id=uuid4(),
                    book_id=book_id,
                    user_id=identity.user_id,
                    rating=rating,
                    comment=comment,
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.info("Review %s created for book %s", review.id, book_id)
        return review

    async def list_reviews(self, book_id: UUID) -> list[Review]:
        """Reviews newest first, each carrying the reviewer's display name."""
        reviews = await self.review_repository.get_by_book(book_id)
        names: dict[UUID, str] = {}
        try:
            profiles = await self.profile_repository.get_many(list({r.user_id for r in reviews}))
            names = {p.id: p.display_name for p in profiles}
        except Exception as exc:
            logger.warning("Could not load reviewer names for book %s: %s", book_id, exc)
        for review in reviews:
            review.reviewer_name = names.get(review.user_id, "Anonymous")
        return reviews

    async def rating_summary(self, book_id: UUID) -> dict:
        count, average = await self.review_repository.rating_summary(book_id)
        return {"book_id": book_id, "review_count": count, "average_rating": average}
