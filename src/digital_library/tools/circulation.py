"""
Circulation tools for the Digital Library.

1. borrow_book: lend a copy and open a borrow record
2. return_book: close the user's open record and shelve the copy
3. mark_overdue: flag loans past their due date
4. list_active_loans: what a user currently has out
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..database.circulation_repository import CirculationRepository
from ..database.session import get_session
from ..models.book import Book, BorrowRecord
from ..observability import trace_tool
from .responses import error_from_exception, success_response

logger = logging.getLogger(__name__)


class LoanInput(BaseModel):
    """Input schema for borrow_book and return_book."""

    book_id: str = Field(
        ...,
        min_length=1,
        description="Id of the book",
        examples=["book_3f2a9c0d1e7b4c55a1d0f6e2b9c8a7d6"],
    )

    user_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Id of the borrowing user",
        examples=["user_ada"],
    )


def _loan_data(book: Book, record: BorrowRecord | None) -> dict[str, Any]:
    return {
        "book": book.model_dump(mode="json"),
        "record": record.model_dump(mode="json") if record else None,
        "available_copies": book.available_copies,
        "availability": book.availability.value,
    }


@trace_tool("borrow_book")
async def borrow_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the borrow_book tool.

    The response carries the new borrow record so the client can show the
    due date without a second call.
    """
    try:
        params = LoanInput.model_validate(arguments)
        with get_session() as session:
            book = CirculationRepository(session).borrow_book(params.book_id, params.user_id)
    except Exception as e:
        return error_from_exception(e, "borrow book")

    record = book.borrow_history[-1]
    return success_response(
        f"'{book.title}' lent to {params.user_id}. "
        f"Due date: {record.due_date.strftime('%B %d, %Y')}. "
        f"{book.available_copies} of {book.total_copies} copies remain on the shelf.",
        _loan_data(book, record),
    )


@trace_tool("return_book")
async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the return_book tool."""
    try:
        params = LoanInput.model_validate(arguments)
        with get_session() as session:
            book = CirculationRepository(session).return_book(params.book_id, params.user_id)
    except Exception as e:
        return error_from_exception(e, "return book")

    returned = [
        r for r in book.borrow_history if r.user_id == params.user_id and r.return_date
    ]
    record = max(returned, key=lambda r: r.return_date) if returned else None
    return success_response(
        f"'{book.title}' returned by {params.user_id}. "
        f"{book.available_copies} of {book.total_copies} copies on the shelf.",
        _loan_data(book, record),
    )


class MarkOverdueInput(BaseModel):
    """Input schema for mark_overdue."""

    book_id: str | None = Field(None, min_length=1, description="Only sweep this book")


@trace_tool("mark_overdue")
async def mark_overdue_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the mark_overdue tool."""
    try:
        params = MarkOverdueInput.model_validate(arguments or {})
        with get_session() as session:
            changed = CirculationRepository(session).mark_overdue(params.book_id)
    except Exception as e:
        return error_from_exception(e, "mark overdue loans")

    return success_response(
        f"Marked {changed} loan(s) overdue." if changed else "No loans are past due.",
        {"records_changed": changed},
    )


class ActiveLoansInput(BaseModel):
    """Input schema for list_active_loans."""

    user_id: str = Field(..., min_length=1, max_length=64)


@trace_tool("list_active_loans")
async def list_active_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the list_active_loans tool."""
    try:
        params = ActiveLoansInput.model_validate(arguments)
        with get_session() as session:
            loans = CirculationRepository(session).get_active_loans(params.user_id)
    except Exception as e:
        return error_from_exception(e, "list active loans")

    if not loans:
        message = f"{params.user_id} has no books out."
    else:
        lines = [
            f"- {loan.book.title} by {loan.book.author}, due "
            f"{loan.due_date.strftime('%B %d, %Y')}" + (" (OVERDUE)" if loan.overdue else "")
            for loan in loans
        ]
        message = f"{params.user_id} has {len(loans)} book(s) out:\n" + "\n".join(lines)
    return success_response(message, {"loans": [loan.model_dump(mode="json") for loan in loans]})


# =============================================================================
# TOOL DEFINITIONS
# =============================================================================

borrow_book = {
    "name": "borrow_book",
    "description": (
        "Borrow a copy of a book for a user. The book must be available with a copy on "
        "the shelf, and the user must not hold an overdue copy of it. Loans run for the "
        "configured loan period (14 days by default)."
    ),
    "inputSchema": LoanInput.model_json_schema(),
    "handler": borrow_book_handler,
}

return_book = {
    "name": "return_book",
    "description": (
        "Return a book the user borrowed. Closes the user's oldest open loan and puts "
        "the copy back on the shelf."
    ),
    "inputSchema": LoanInput.model_json_schema(),
    "handler": return_book_handler,
}

mark_overdue = {
    "name": "mark_overdue",
    "description": "Flag every loan past its due date as overdue, optionally for one book.",
    "inputSchema": MarkOverdueInput.model_json_schema(),
    "handler": mark_overdue_handler,
}

list_active_loans = {
    "name": "list_active_loans",
    "description": "List the books a user currently has out, soonest due first.",
    "inputSchema": ActiveLoansInput.model_json_schema(),
    "handler": list_active_loans_handler,
}
