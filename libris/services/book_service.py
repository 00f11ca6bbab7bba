"""Book service with business logic."""

import logging
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlparse
from uuid import UUID, uuid4

from libris.domain.entities import Book, Identity
from libris.domain.errors import NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IBookRepository, IStorageService
from libris.domain.services import IBookService
from libris.services.inventory_service import InventoryLedger

logger = logging.getLogger(__name__)

COVER_BUCKET = "book-covers"
PDF_BUCKET = "book-pdfs"

EDITABLE_FIELDS = ("title", "author", "description", "isbn", "publication_year", "category")


class BookService(IBookService):
    """Catalogue management: staff entries, member publications, discovery."""

    def __init__(
        self,
        book_repository: IBookRepository,
        storage_service: IStorageService,
        ledger: InventoryLedger,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.book_repository = book_repository
        self.storage_service = storage_service
        self.ledger = ledger
        self.clock = clock

    async def add_book(
        self,
        identity: Optional[Identity],
        title: str = "",
        author: str = "",
        description: Optional[str] = None,
        isbn: Optional[str] = None,
        publication_year: Optional[int] = None,
        category: Optional[str] = None,
        total_copies: int = 1,
        cover_url: Optional[str] = None,
    ) -> Book:
        authorize(identity, Capability.MANAGE_INVENTORY)
        if total_copies < 1:
            raise ValidationError("A book needs at least one copy")
        title, author = self._check_details(title, author, publication_year)

        now = self.clock()
        book = await self.book_repository.create(
            Book(
                id=uuid4(),
                title=title,
                author=author,
                description=description,
                isbn=isbn,
                publication_year=publication_year,
                category=_clean(category),
                cover_url=cover_url,
                total_copies=total_copies,
                available_copies=total_copies,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Book added: %s '%s' (%d copies)", book.id, book.title, book.total_copies)
        return book

    async def publish_book(
        self,
        identity: Optional[Identity],
        cover: Optional[tuple[bytes, str]] = None,
        pdf: Optional[tuple[bytes, str]] = None,
        title: str = "",
        author: str = "",
        description: Optional[str] = None,
        isbn: Optional[str] = None,
        publication_year: Optional[int] = None,
        category: Optional[str] = None,
    ) -> Book:
        """Publish a member's own title.

        Member publications always start with a single copy.  Files are
        uploaded before the row is written and removed again if the write
        fails.
        """
        authorize(identity, Capability.PUBLISH_BOOK)
        title, author = self._check_details(title, author, publication_year)

        uploaded: list[tuple[str, str]] = []
        cover_url = pdf_url = None
        if cover is not None:
            key = await self.storage_service.save_file(cover[0], cover[1], COVER_BUCKET)
            uploaded.append((key, COVER_BUCKET))
            cover_url = self.storage_service.public_url(key, COVER_BUCKET)
        if pdf is not None:
            key = await self.storage_service.save_file(pdf[0], pdf[1], PDF_BUCKET)
            uploaded.append((key, PDF_BUCKET))
            pdf_url = self.storage_service.public_url(key, PDF_BUCKET)

        now = self.clock()
        try:
            book = await self.book_repository.create(
                Book(
                    id=uuid4(),
                    title=title,
                    author=author,
                    description=description,
                    isbn=isbn,
                    publication_year=publication_year,
                    category=_clean(category),
                    cover_url=cover_url,
                    pdf_url=pdf_url,
                    total_copies=1,
                    available_copies=1,
                    owner_id=identity.user_id,
                    created_at=now,
                    updated_at=now,
                )
            )
        except Exception:
            for key, bucket in uploaded:
                await self._remove_file(key, bucket)
            raise

        logger.info("Book published: %s '%s' by member %s", book.id, book.title, identity.user_id)
        return book

    async def get_book(self, book_id: UUID) -> Book:
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            raise NotFound("Book not found")
        return book

    async def list_books(
        self,
        skip: int = 0,
        limit: int = 20,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> tuple[list[Book], int]:
        search = _clean(search)
        category = _clean(category)
        books = await self.book_repository.list_all(skip, limit, search, category, owner_id)
        total = await self.book_repository.count(search, category, owner_id)
        return books, total

    async def count_books(self) -> int:
        return await self.book_repository.count()

    async def list_categories(self) -> list[str]:
        return await self.book_repository.list_categories()

    async def update_book(self, identity: Optional[Identity], book_id: UUID, **changes) -> Book:
        """Update book metadata.  Copy counts go through the ledger."""
        book = await self.get_book(book_id)
        authorize(identity, Capability.EDIT_BOOK, owner_id=book.owner_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(book, name, value)
        book.title, book.author = self._check_details(book.title, book.author, book.publication_year)
        book.category = _clean(book.category)
        book.updated_at = self.clock()
        return await self.book_repository.update(book)

    async def update_copy_counts(
        self, identity: Optional[Identity], book_id: UUID, total_copies: int
    ) -> Book:
        return await self.ledger.update_copy_counts(identity, book_id, total_copies)

    async def delete_book(self, identity: Optional[Identity], book_id: UUID) -> None:
        authorize(identity, Capability.MANAGE_INVENTORY)
        book = await self.get_book(book_id)
        await self.book_repository.delete(book_id)
        logger.info("Book deleted: %s", book_id)
        if book.cover_url:
            await self._remove_file(_storage_key(book.cover_url), COVER_BUCKET)
        if book.pdf_url:
            await self._remove_file(_storage_key(book.pdf_url), PDF_BUCKET)

    async def recommend(self, book_id: UUID, limit: int = 4) -> list[Book]:
        """Books like *book_id*: same category first, then the newest others."""
        book = await self.get_book(book_id)
        picks: list[Book] = []
        if book.category:
            picks = await self.book_repository.list_others([book_id], category=book.category, limit=limit)
        if len(picks) < limit:
            picks += await self.book_repository.list_others(
                [book_id] + [b.id for b in picks], limit=limit - len(picks)
            )
        return picks

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_details(
        self, title: Optional[str], author: Optional[str], publication_year: Optional[int]
    ) -> tuple[str, str]:
        title = (title or "").strip()
        author = (author or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if not author:
            raise ValidationError("Author is required")
        if publication_year is not None:
            latest = self.clock().year + 1
            if not 1000 <= publication_year <= latest:
                raise ValidationError(f"Publication year must be between 1000 and {latest}")
        return title, author

    async def _remove_file(self, key: str, bucket: str) -> None:
        try:
            await self.storage_service.delete_file(key, bucket)
        except Exception as exc:
            logger.warning("Could not remove %s/%s: %s", bucket, key, exc)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _storage_key(url: str) -> str:
    # Keys are always "<2-char shard>/<hash>_<name>", whatever the URL prefix.
    return "/".join(urlparse(url).path.split("/")[-2:])
