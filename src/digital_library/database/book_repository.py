"""
Book repository implementation for the Digital Library.

This repository owns the catalog side of the book aggregate:

1. **Catalog**: create and update entries, with ISBN uniqueness
2. **Discovery**: available books, genre listing, ranked text search
3. **Reviews**: one review per user, keeping the running rating current
4. **Availability overrides**: reserved / maintenance flags

Loan bookkeeping (borrow/return) lives in ``CirculationRepository``, which
uses this repository to load and convert books.
"""

import logging
import re
import uuid
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..models.book import (
    ISBN_PATTERN,
    Availability,
    Book,
    BookBase,
    BorrowRecord,
    Genre,
    Rating,
    Review,
    normalize_isbn,
    normalize_tags,
)
from ..observability import trace_repository_operation
from .exceptions import DomainError, DuplicateError
from .repository import (
    LIKE_ESCAPE,
    BaseRepository,
    PaginatedResponse,
    PaginationParams,
    like_pattern,
)
from .schema import Book as BookDB
from .schema import BookGenre as BookGenreDB
from .schema import BorrowRecord as BorrowRecordDB
from .schema import Review as ReviewDB
from .session import safe_commit

logger = logging.getLogger(__name__)

# Relative weight of a term hit in each searchable field
SEARCH_WEIGHTS = {"title": 3.0, "author": 2.0, "description": 1.0}

_WORD = re.compile(r"\w+")


class BookCreateSchema(BookBase):
    """Schema for adding a book to the catalog."""

    added_by: str = Field(..., min_length=1, max_length=64)


class BookUpdateSchema(BaseModel):
    """
    Schema for updating a book - all fields optional.

    ``added_by`` is deliberately absent: the creator never changes. Changing
    ``total_copies`` alone moves ``available_copies`` by the same amount.
    """

    title: str | None = Field(None, min_length=1, max_length=200)
    author: str | None = Field(None, min_length=1, max_length=100)
    isbn: str | None = None
    description: str | None = Field(None, max_length=2000)
    genre: list[Genre] | None = None
    language: str | None = Field(None, min_length=1, max_length=50)
    published_date: date | None = None
    publisher: str | None = Field(None, max_length=100)
    page_count: int | None = Field(None, ge=1)
    cover_image: str | None = None
    pdf_file: str | None = None
    total_copies: int | None = Field(None, ge=0)
    available_copies: int | None = Field(None, ge=0)
    tags: list[str] | None = None

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    @field_validator("title", "author", "language")
    @classmethod
    def reject_null(cls, v: str | None) -> str:
        """Required columns may be omitted but never cleared."""
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not ISBN_PATTERN.match(v):
            raise ValueError("Please enter a valid ISBN")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else normalize_tags(v)


def _is_isbn_conflict(error: IntegrityError) -> bool:
    """True when the unique ISBN index rejected the write (SQLite names the column)."""
    message = str(error.orig)
    return "ix_books_isbn" in message or "books.isbn_key" in message


def new_book_id() -> str:
    return f"book_{uuid.uuid4().hex}"


def borrow_record_to_model(record: BorrowRecordDB) -> BorrowRecord:
    """Convert a ledger row to its Pydantic model."""
    return BorrowRecord(
        id=record.id,
        user_id=record.user_id,
        borrow_date=record.borrow_date,
        due_date=record.due_date,
        return_date=record.return_date,
        status=record.status,
    )


def search_score(book: BookDB | Book, terms: list[str]) -> float:
    """
    Weighted count of whole-word term hits in title, author and description.

    A book that matches no term scores 0.
    """
    score = 0.0
    for field, weight in SEARCH_WEIGHTS.items():
        words = _WORD.findall((getattr(book, field) or "").lower())
        if not words:
            continue
        hits = sum(words.count(term) for term in terms)
        score += weight * hits
    return score


class BookRepository(BaseRepository[BookDB, Book]):
    """
    Repository for book data access.

    Every write loads the aggregate, mutates it and commits once; the
    version column turns a write based on a stale read into
    ``ConcurrencyError``.
    """

    @property
    def model_class(self):
        return BookDB

    def _load_options(self) -> tuple:
        return (
            selectinload(BookDB.genres),
            selectinload(BookDB.borrow_history),
            selectinload(BookDB.reviews),
        )

    def _to_model(self, db_obj: BookDB) -> Book:
        return Book(
            id=db_obj.id,
            title=db_obj.title,
            author=db_obj.author,
            isbn=db_obj.isbn,
            description=db_obj.description,
            genre=db_obj.genre_values,
            language=db_obj.language,
            published_date=db_obj.published_date,
            publisher=db_obj.publisher,
            page_count=db_obj.page_count,
            cover_image=db_obj.cover_image,
            pdf_file=db_obj.pdf_file,
            availability=db_obj.availability,
            total_copies=db_obj.total_copies,
            available_copies=db_obj.available_copies,
            tags=list(db_obj.tags or []),
            added_by=db_obj.added_by,
            rating=Rating(average=db_obj.rating_average, count=db_obj.rating_count),
            borrow_history=[borrow_record_to_model(r) for r in db_obj.borrow_history],
            reviews=[
                Review(
                    id=r.id,
                    user_id=r.user_id,
                    rating=r.rating,
                    comment=r.comment,
                    date=r.date,
                )
                for r in db_obj.reviews
            ],
            created_at=db_obj.created_at,
            updated_at=db_obj.updated_at,
            version=db_obj.version,
        )

    def get_for_update(self, book_id: str) -> BookDB:
        """Load a book row for a write; raises ``NotFoundError``."""
        return self._get_or_raise(book_id)

    def load_where(self, *criteria) -> list[BookDB]:
        """Load book rows (with children) for a write, filtered by ``criteria``."""
        query = self._select().where(*criteria).order_by(BookDB.id.asc())
        return self._all(query, "Failed to load books")

    def to_model(self, db_obj: BookDB) -> Book:
        return self._to_model(db_obj)

    def save(self, book: BookDB, operation: str) -> Book:
        """
        Touch ``updated_at`` and commit the aggregate.

        Raises:
            ConcurrencyError: If the book changed since it was loaded
            DuplicateError: If another request took the same ISBN first
            DomainError: If a database constraint rejected the new state
        """
        book.updated_at = self.clock.now()
        isbn = book.isbn
        try:
            safe_commit(self.session, operation)
        except IntegrityError as e:
            if _is_isbn_conflict(e):
                raise DuplicateError(
                    f"Book with ISBN {isbn} already exists", field="isbn"
                ) from e
            raise DomainError(f"Cannot {operation}: {e.orig}") from e
        return self._to_model(book)

    # --- Catalog -------------------------------------------------------

    def create(self, data: BookCreateSchema) -> Book:
        """
        Add a book to the catalog.

        Raises:
            DuplicateError: If another book already has this ISBN
        """
        isbn_key = normalize_isbn(data.isbn) if data.isbn else None
        if isbn_key and self._isbn_taken(isbn_key):
            raise DuplicateError(f"Book with ISBN {data.isbn} already exists", field="isbn")

        now = self.clock.now()
        book = BookDB(
            id=new_book_id(),
            title=data.title,
            author=data.author,
            isbn=data.isbn,
            isbn_key=isbn_key,
            description=data.description,
            language=data.language,
            published_date=data.published_date,
            publisher=data.publisher,
            page_count=data.page_count,
            cover_image=data.cover_image,
            pdf_file=data.pdf_file,
            availability=data.availability,
            total_copies=data.total_copies,
            available_copies=data.available_copies,
            tags=list(data.tags),
            added_by=data.added_by,
            created_at=now,
            updated_at=now,
        )
        book.genres = [BookGenreDB(genre=genre) for genre in data.genre]
        self.session.add(book)

        try:
            safe_commit(self.session, "create book")
        except IntegrityError as e:
            raise DuplicateError(
                f"Book with ISBN {data.isbn} already exists", field="isbn"
            ) from e

        logger.info("Added book %s (%s)", book.id, book.title)
        return self._to_model(book)

    def get_by_isbn(self, isbn: str) -> Book | None:
        """Get book by ISBN; prefixes, hyphens and spaces are ignored."""
        query = self._select().where(BookDB.isbn_key == normalize_isbn(isbn))
        rows = self._all(query, "Failed to get book by ISBN")
        return self._to_model(rows[0]) if rows else None

    def update(self, book_id: str, data: BookUpdateSchema) -> Book:
        """
        Update catalog fields.

        Raises:
            NotFoundError: If the book does not exist
            DuplicateError: If the new ISBN belongs to another book
            DomainError: If the copy counters would break the availability invariant
        """
        book = self.get_for_update(book_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return self._to_model(book)

        with trace_repository_operation("books", "update"):
            # Checks run before the row is touched; a refused update leaves it clean
            if "isbn" in changes:
                new_isbn = changes.pop("isbn")
                changes["isbn_key"] = normalize_isbn(new_isbn) if new_isbn else None
                if (
                    changes["isbn_key"]
                    and changes["isbn_key"] != book.isbn_key
                    and self._isbn_taken(changes["isbn_key"])
                ):
                    raise DuplicateError(f"Book with ISBN {new_isbn} already exists", field="isbn")
                changes["isbn"] = new_isbn

            if "total_copies" in changes or "available_copies" in changes:
                # Validates both counters before assigning either
                self._apply_copy_change(
                    book, changes.pop("total_copies", None), changes.pop("available_copies", None)
                )

            if "genre" in changes:
                self._replace_genres(book, changes.pop("genre") or [])

            if "tags" in changes:
                changes["tags"] = changes["tags"] or []

            for field, value in changes.items():
                setattr(book, field, value)

            return self.save(book, "update book")

    def set_availability(self, book_id: str, availability: Availability) -> Book:
        """
        Manually set a book's availability.

        ``reserved`` and ``maintenance`` are always allowed; ``available``
        needs a copy on the shelf and ``borrowed`` needs none.
        """
        book = self.get_for_update(book_id)
        availability = Availability(availability)

        if availability == Availability.AVAILABLE and book.available_copies == 0:
            raise DomainError("Cannot mark book available: no copies are on the shelf")
        if availability == Availability.BORROWED and book.available_copies > 0:
            raise DomainError("Cannot mark book borrowed while copies are on the shelf")

        book.availability = availability
        return self.save(book, "set availability")

    # --- Reviews -------------------------------------------------------

    def add_review(
        self, book_id: str, user_id: str, rating: int, comment: str | None = None
    ) -> Book:
        """
        Add a user's review and refresh the running rating.

        Raises:
            DomainError: If the user already reviewed this book
        """
        review = Review(user_id=user_id, rating=rating, comment=comment, date=self.clock.now())
        book = self.get_for_update(book_id)

        if any(existing.user_id == user_id for existing in book.reviews):
            raise DomainError(f"User {user_id} has already reviewed this book")

        book.reviews.append(
            ReviewDB(
                user_id=review.user_id,
                rating=review.rating,
                comment=review.comment,
                date=review.date,
            )
        )
        ratings = [r.rating for r in book.reviews]
        book.rating_count = len(ratings)
        book.rating_average = round(sum(ratings) / len(ratings), 2)

        return self.save(book, "add review")

    # --- Discovery -----------------------------------------------------

    def find_available(self, limit: int | None = None) -> list[Book]:
        """Books that can be borrowed right now, by title."""
        query = (
            self._select()
            .where(BookDB.availability == Availability.AVAILABLE, BookDB.available_copies > 0)
            .order_by(BookDB.title.asc(), BookDB.id.asc())
        )
        if limit:
            query = query.limit(limit)
        return [self._to_model(b) for b in self._all(query, "Failed to list available books")]

    def get_by_genre(
        self, genre: Genre, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[Book]:
        """Books in a genre, by title."""
        genre = Genre(genre)
        query = (
            self._select()
            .where(BookDB.genres.any(BookGenreDB.genre == genre))
            .order_by(BookDB.title.asc(), BookDB.id.asc())
        )
        return self._paginate_query(query, pagination)

    def search_books(self, query_text: str, limit: int | None = None) -> list[Book]:
        """
        Full-text search over title, author and description.

        Candidates are narrowed in SQL, then ranked by ``search_score``
        (highest first, ties by title). Only whole-word matches count.
        """
        terms = list(dict.fromkeys(t.lower() for t in _WORD.findall(query_text or "")))
        if not terms:
            return []

        conditions = []
        for term in terms:
            pattern = like_pattern(term)
            conditions.extend(
                column.ilike(pattern, escape=LIKE_ESCAPE)
                for column in (BookDB.title, BookDB.author, BookDB.description)
            )

        with trace_repository_operation("books", "search") as span:
            candidates = self._all(
                self._select().where(or_(*conditions)), "Failed to search books"
            )
            scored = [(search_score(book, terms), book) for book in candidates]
            ranked = sorted(
                (item for item in scored if item[0] > 0),
                key=lambda item: (-item[0], item[1].title.lower(), item[1].id),
            )
            if limit:
                ranked = ranked[:limit]
            span.set_attribute("result.match_count", len(ranked))

        return [self._to_model(book) for _, book in ranked]

    # --- Helpers -------------------------------------------------------

    def _isbn_taken(self, isbn_key: str) -> bool:
        query = select(func.count()).select_from(BookDB).where(BookDB.isbn_key == isbn_key)
        return (self.session.execute(query).scalar() or 0) > 0

    def _replace_genres(self, book: BookDB, genres: list[Genre]) -> None:
        """Diff the genre set so the unique constraint never sees a delete+insert of one value."""
        wanted = list(dict.fromkeys(Genre(g) for g in genres))
        for entry in list(book.genres):
            if entry.genre not in wanted:
                book.genres.remove(entry)
        present = {entry.genre for entry in book.genres}
        for genre in wanted:
            if genre not in present:
                book.genres.append(BookGenreDB(genre=genre))

    def _apply_copy_change(
        self, book: BookDB, total: int | None, available: int | None
    ) -> None:
        """
        Apply new copy counts, keeping 0 <= available <= total.

        A new total without an explicit available count adds or removes
        shelf copies: copies on loan are never touched.
        """
        new_total = book.total_copies if total is None else total
        if available is None:
            new_available = book.available_copies + (new_total - book.total_copies)
        else:
            new_available = available

        if new_available < 0:
            raise DomainError(
                f"Cannot reduce total copies to {new_total}: "
                f"{book.total_copies - book.available_copies} copies are on loan"
            )
        if new_available > new_total:
            raise DomainError("Available copies cannot exceed total copies")

        book.total_copies = new_total
        book.available_copies = new_available

        if book.availability == Availability.BORROWED and new_available > 0:
            book.availability = Availability.AVAILABLE
        elif book.availability == Availability.AVAILABLE and new_available == 0:
            book.availability = Availability.BORROWED
