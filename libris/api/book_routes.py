"""Book API routes (catalogue, publishing, copies, reviews, recommendations)."""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status

from libris.api.schemas import (
    BookCreate,
    BookListResponse,
    BookResponse,
    BookUpdate,
    CopyCountUpdate,
    FavoriteToggleResponse,
    RatingSummaryResponse,
    ReviewCreateRequest,
    ReviewResponse,
)
from libris.core.dependencies import (
    CurrentIdentity,
    get_book_service,
    get_favorite_service,
    get_review_service,
)
from libris.domain.services import IBookService
from libris.services.favorite_service import FavoriteService
from libris.services.review_service import ReviewService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/books", tags=["books"])

BookServiceDep = Annotated[IBookService, Depends(get_book_service)]


async def _read_upload(upload: Optional[UploadFile]) -> Optional[tuple[bytes, str]]:
    if upload is None or not upload.filename:
        return None
    return await upload.read(), upload.filename


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
@router.get("/", response_model=BookListResponse)
async def list_books(
    book_service: BookServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    search: Optional[str] = None,
    category: Optional[str] = None,
    owner_id: Optional[UUID] = None,
) -> BookListResponse:
    """Books newest first, optionally searched by title/author."""
    books, total = await book_service.list_books(
        skip=(page - 1) * limit, limit=limit, search=search, category=category, owner_id=owner_id
    )
    return BookListResponse(
        books=[BookResponse.model_validate(b) for b in books], total=total, page=page, limit=limit
    )


@router.get("/categories", response_model=list[str])
async def list_categories(book_service: BookServiceDep) -> list[str]:
    return await book_service.list_categories()


@router.post("/", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def add_book(
    body: BookCreate,
    identity: CurrentIdentity,
    book_service: BookServiceDep,
) -> BookResponse:
    """Staff: add a title with its number of physical copies."""
    book = await book_service.add_book(identity, **body.model_dump())
    return BookResponse.model_validate(book)


@router.post("/publish", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def publish_book(
    identity: CurrentIdentity,
    book_service: BookServiceDep,
    title: Annotated[str, Form()],
    author: Annotated[str, Form()],
    description: Annotated[Optional[str], Form()] = None,
    isbn: Annotated[Optional[str], Form()] = None,
    publication_year: Annotated[Optional[int], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
    cover: Annotated[Optional[UploadFile], File()] = None,
    pdf: Annotated[Optional[UploadFile], File()] = None,
) -> BookResponse:
    """Member: publish your own book, optionally with a cover image and a PDF."""
    book = await book_service.publish_book(
        identity,
        cover=await _read_upload(cover),
        pdf=await _read_upload(pdf),
        title=title,
        author=author,
        description=description,
        isbn=isbn,
        publication_year=publication_year,
        category=category,
    )
    return BookResponse.model_validate(book)


@router.get("/{book_id}", response_model=BookResponse)
async def get_book(book_id: UUID, book_service: BookServiceDep) -> BookResponse:
    return BookResponse.model_validate(await book_service.get_book(book_id))


@router.put("/{book_id}", response_model=BookResponse)
async def update_book(
    book_id: UUID,
    body: BookUpdate,
    identity: CurrentIdentity,
    book_service: BookServiceDep,
) -> BookResponse:
    """Update book metadata (staff, or the member who published it)."""
    book = await book_service.update_book(identity, book_id, **body.model_dump(exclude_unset=True))
    return BookResponse.model_validate(book)


@router.put("/{book_id}/copies", response_model=BookResponse)
async def update_copy_counts(
    book_id: UUID,
    body: CopyCountUpdate,
    identity: CurrentIdentity,
    book_service: BookServiceDep,
) -> BookResponse:
    """Staff: change the number of copies; available copies move by the same amount."""
    book = await book_service.update_copy_counts(identity, book_id, body.total_copies)
    return BookResponse.model_validate(book)


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(
    book_id: UUID,
    identity: CurrentIdentity,
    book_service: BookServiceDep,
) -> Response:
    await book_service.delete_book(identity, book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{book_id}/recommendations", response_model=list[BookResponse])
async def recommend(
    book_id: UUID,
    book_service: BookServiceDep,
    limit: Annotated[int, Query(ge=1, le=20)] = 4,
) -> list[BookResponse]:
    """Similar books: same category first, then the newest others."""
    books = await book_service.recommend(book_id, limit)
    return [BookResponse.model_validate(b) for b in books]


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
@router.get("/{book_id}/reviews", response_model=list[ReviewResponse])
async def list_reviews(
    book_id: UUID,
    review_service: Annotated[ReviewService, Depends(get_review_service)],
) -> list[ReviewResponse]:
    reviews = await review_service.list_reviews(book_id)
    return [ReviewResponse.model_validate(r) for r in reviews]


@router.post("/{book_id}/reviews", response_model=ReviewResponse)
async def submit_review(
    book_id: UUID,
    body: ReviewCreateRequest,
    identity: CurrentIdentity,
    review_service: Annotated[ReviewService, Depends(get_review_service)],
) -> ReviewResponse:
    """Create your review of a book, or replace it if you already wrote one."""
    review = await review_service.submit_review(identity, book_id, body.rating, body.comment)
    return ReviewResponse.model_validate(review)


@router.get("/{book_id}/rating", response_model=RatingSummaryResponse)
async def rating_summary(
    book_id: UUID,
    review_service: Annotated[ReviewService, Depends(get_review_service)],
) -> RatingSummaryResponse:
    return RatingSummaryResponse(**await review_service.rating_summary(book_id))


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------
@router.post("/{book_id}/favorite", response_model=FavoriteToggleResponse)
async def toggle_favorite(
    book_id: UUID,
    identity: CurrentIdentity,
    favorite_service: Annotated[FavoriteService, Depends(get_favorite_service)],
) -> FavoriteToggleResponse:
    is_favorite = await favorite_service.toggle(identity, book_id)
    return FavoriteToggleResponse(book_id=book_id, is_favorite=is_favorite)


@router.get("/{book_id}/favorite", response_model=FavoriteToggleResponse)
async def get_favorite(
    book_id: UUID,
    identity: CurrentIdentity,
    favorite_service: Annotated[FavoriteService, Depends(get_favorite_service)],
) -> FavoriteToggleResponse:
    is_favorite = await favorite_service.is_favorite(identity, book_id)
    return FavoriteToggleResponse(book_id=book_id, is_favorite=is_favorite)
