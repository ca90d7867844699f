"""
Catalog tools for the Digital Library.

1. add_book / update_book: maintain catalog entries
2. get_book: look a book up by id or ISBN
3. list_available_books / search_books: discovery
4. add_review: rate a book
5. set_availability: reserve a book or take it out for maintenance
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..database.book_repository import BookCreateSchema, BookRepository, BookUpdateSchema
from ..database.exceptions import NotFoundError
from ..database.session import get_session
from ..models.book import Availability, Book
from ..observability import trace_tool
from .responses import error_from_exception, success_response

logger = logging.getLogger(__name__)


def _book_data(book: Book) -> dict[str, Any]:
    return book.model_dump(mode="json")


def _book_line(book: Book) -> str:
    return (
        f"- {book.full_title} [{book.id}] "
        f"({book.available_copies}/{book.total_copies} available)"
    )


# =============================================================================
# ADD / UPDATE
# =============================================================================


@trace_tool("add_book")
async def add_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Add a book to the catalog."""
    try:
        params = BookCreateSchema.model_validate(arguments)
        with get_session() as session:
            book = BookRepository(session).create(params)
    except Exception as e:
        return error_from_exception(e, "add book")

    return success_response(
        f"Added '{book.full_title}' to the catalog with id {book.id}.",
        {"book": _book_data(book)},
    )


class UpdateBookInput(BookUpdateSchema):
    """Input schema for update_book: the book id plus any fields to change."""

    book_id: str = Field(..., min_length=1, description="Book to update")


@trace_tool("update_book")
async def update_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Update catalog fields of a book."""
    try:
        params = UpdateBookInput.model_validate(arguments)
        changes = BookUpdateSchema.model_validate(
            params.model_dump(exclude_unset=True, exclude={"book_id"})
        )
        with get_session() as session:
            book = BookRepository(session).update(params.book_id, changes)
    except Exception as e:
        return error_from_exception(e, "update book")

    updated = sorted(changes.model_fields_set)
    return success_response(
        f"Updated '{book.full_title}'"
        + (f": {', '.join(updated)}." if updated else " (no changes)."),
        {"book": _book_data(book), "updated_fields": updated},
    )


# =============================================================================
# LOOKUP AND DISCOVERY
# =============================================================================


class GetBookInput(BaseModel):
    """Input schema for get_book: exactly one of book_id or isbn."""

    book_id: str | None = Field(None, min_length=1)
    isbn: str | None = Field(None, min_length=1, examples=["978-0-306-40615-7"])

    @model_validator(mode="after")
    def validate_lookup(self) -> "GetBookInput":
        if (self.book_id is None) == (self.isbn is None):
            raise ValueError("Provide exactly one of book_id or isbn")
        return self


@trace_tool("get_book")
async def get_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Fetch one book with its borrow history and reviews."""
    try:
        params = GetBookInput.model_validate(arguments)
        with get_session() as session:
            repo = BookRepository(session)
            if params.book_id is not None:
                book = repo.get_by_id(params.book_id)
            else:
                book = repo.get_by_isbn(params.isbn)
            if book is None:
                raise NotFoundError(f"Book {params.book_id or params.isbn} not found")
    except Exception as e:
        return error_from_exception(e, "get book")

    status = "available" if book.is_available else book.availability.value
    return success_response(
        f"{book.full_title}: {status}, {book.available_copies} of {book.total_copies} "
        "copies on the shelf.",
        {"book": _book_data(book)},
    )


class ListAvailableBooksInput(BaseModel):
    """Input schema for list_available_books."""

    limit: int = Field(default=20, ge=1, le=100, description="Maximum number of books")


@trace_tool("list_available_books")
async def list_available_books_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """List books that can be borrowed right now."""
    try:
        params = ListAvailableBooksInput.model_validate(arguments or {})
        with get_session() as session:
            books = BookRepository(session).find_available(limit=params.limit)
    except Exception as e:
        return error_from_exception(e, "list available books")

    if not books:
        message = "No books are available to borrow right now."
    else:
        message = f"{len(books)} book(s) available:\n" + "\n".join(_book_line(b) for b in books)
    return success_response(message, {"books": [_book_data(b) for b in books]})


class SearchBooksInput(BaseModel):
    """Input schema for search_books."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Words to look for in title, author and description",
        examples=["left hand darkness", "le guin"],
    )
    limit: int = Field(default=10, ge=1, le=50)


@trace_tool("search_books")
async def search_books_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Ranked full-text search over the catalog."""
    try:
        params = SearchBooksInput.model_validate(arguments)
        with get_session() as session:
            books = BookRepository(session).search_books(params.query, limit=params.limit)
    except Exception as e:
        return error_from_exception(e, "search books")

    if not books:
        message = f"No books found matching '{params.query}'."
    else:
        message = f"Found {len(books)} book(s) matching '{params.query}':\n" + "\n".join(
            _book_line(b) for b in books
        )
    return success_response(
        message, {"query": params.query, "books": [_book_data(b) for b in books]}
    )


# =============================================================================
# REVIEWS AND AVAILABILITY
# =============================================================================


class AddReviewInput(BaseModel):
    """Input schema for add_review."""

    book_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, max_length=64)
    rating: int = Field(..., ge=1, le=5, description="1 (poor) to 5 (excellent)")
    comment: str | None = Field(None, max_length=500)


@trace_tool("add_review")
async def add_review_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Add a user's review to a book."""
    try:
        params = AddReviewInput.model_validate(arguments)
        with get_session() as session:
            book = BookRepository(session).add_review(
                params.book_id, params.user_id, params.rating, params.comment
            )
    except Exception as e:
        return error_from_exception(e, "add review")

    return success_response(
        f"Review added. '{book.title}' is now rated {book.rating.average:.2f} "
        f"from {book.rating.count} review(s).",
        {"book": _book_data(book)},
    )


class SetAvailabilityInput(BaseModel):
    """Input schema for set_availability."""

    book_id: str = Field(..., min_length=1)
    availability: Availability


@trace_tool("set_availability")
async def set_availability_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Manually override a book's availability."""
    try:
        params = SetAvailabilityInput.model_validate(arguments)
        with get_session() as session:
            book = BookRepository(session).set_availability(params.book_id, params.availability)
    except Exception as e:
        return error_from_exception(e, "set availability")

    return success_response(
        f"'{book.title}' is now {book.availability.value}.", {"book": _book_data(book)}
    )


# =============================================================================
# TOOL DEFINITIONS
# =============================================================================

add_book = {
    "name": "add_book",
    "description": (
        "Add a book to the catalog. ISBN is optional but must be valid and unique when "
        "given. Copy counts default to one; available copies cannot exceed total copies."
    ),
    "inputSchema": BookCreateSchema.model_json_schema(),
    "handler": add_book_handler,
}

update_book = {
    "name": "update_book",
    "description": (
        "Update catalog fields of a book. Changing total_copies alone adds or removes "
        "shelf copies; copies on loan cannot be removed."
    ),
    "inputSchema": UpdateBookInput.model_json_schema(),
    "handler": update_book_handler,
}

get_book = {
    "name": "get_book",
    "description": "Get a book by id or ISBN, including its borrow history and reviews.",
    "inputSchema": GetBookInput.model_json_schema(),
    "handler": get_book_handler,
}

list_available_books = {
    "name": "list_available_books",
    "description": "List books that have a copy on the shelf and can be borrowed now.",
    "inputSchema": ListAvailableBooksInput.model_json_schema(),
    "handler": list_available_books_handler,
}

search_books = {
    "name": "search_books",
    "description": (
        "Search the catalog by title, author and description. Results are ranked: "
        "title matches weigh most, then author, then description."
    ),
    "inputSchema": SearchBooksInput.model_json_schema(),
    "handler": search_books_handler,
}

add_review = {
    "name": "add_review",
    "description": "Rate a book from 1 to 5 with an optional comment. One review per user.",
    "inputSchema": AddReviewInput.model_json_schema(),
    "handler": add_review_handler,
}

set_availability = {
    "name": "set_availability",
    "description": (
        "Override a book's availability: reserved or maintenance take it off the shelf; "
        "available needs a copy on the shelf."
    ),
    "inputSchema": SetAvailabilityInput.model_json_schema(),
    "handler": set_availability_handler,
}
