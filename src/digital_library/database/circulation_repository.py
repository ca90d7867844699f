"""
Circulation repository implementation for the Digital Library.

This repository manages the loan lifecycle of a book's copies:

1. **Borrowing**: lend a copy and open a ledger entry
2. **Returns**: close the user's open entry and shelve the copy
3. **Overdue Management**: flag loans past their due date
4. **Active loans**: what a user currently holds, across books

Copies and ledger entries live on the book aggregate, so every operation
here is a single versioned write of one book (``mark_overdue`` may touch
several). Two requests racing on the same book cannot both succeed.
"""

import logging
from datetime import timedelta

from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..clock import Clock, get_clock
from ..config import get_config
from ..models.book import (
    OPEN_BORROW_STATUSES,
    Availability,
    Book,
    BookSummary,
    BorrowRecord,
    BorrowStatus,
)
from ..observability import record_loan_event, trace_repository_operation
from .book_repository import BookRepository, borrow_record_to_model
from .exceptions import DomainError, NotFoundError
from .schema import Book as BookDB
from .schema import BorrowRecord as BorrowRecordDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class ActiveLoan(BorrowRecord):
    """An open borrow record together with the book it belongs to."""

    book: BookSummary
    overdue: bool = Field(False, description="Past due at the time of the query")


class CirculationRepository:
    """
    Repository for loan operations on books.

    Builds on ``BookRepository`` for loading and saving the aggregate so
    the version check and ``updated_at`` touch apply to every loan change.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        loan_period: timedelta | None = None,
    ):
        """Initialize with database session, time source and loan period."""
        self.session = session
        self.clock = clock or get_clock()
        self.loan_period = loan_period or get_config().loan_period
        self.book_repo = BookRepository(session, self.clock)

    def is_available(self, book_id: str) -> bool:
        """
        True when a copy of the book can be borrowed right now.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = self.book_repo.get_by_id(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return book.is_available

    def borrow_book(self, book_id: str, user_id: str) -> Book:
        """
        Lend one copy of a book to a user.

        Business rules:
        1. Book must be ``available`` with a copy on the shelf
        2. A user holding an overdue copy of this book cannot borrow it again
        3. The last shelf copy flips availability to ``borrowed``
        4. Due date is the borrow time plus the loan period

        Raises:
            NotFoundError: If the book does not exist
            DomainError: If a rule above forbids the loan
            ConcurrencyError: If the book changed since it was loaded
        """
        now = self.clock.now()
        # Validates user_id before anything is touched
        loan = BorrowRecord(user_id=user_id, borrow_date=now, due_date=now + self.loan_period)

        with trace_repository_operation("circulation", "borrow", table="borrow_records") as span:
            span.set_attribute("book_id", book_id)
            book = self.book_repo.get_for_update(book_id)

            if book.availability != Availability.AVAILABLE or book.available_copies <= 0:
                raise DomainError(f"Book {book_id} is not available for borrowing")

            if any(
                record.user_id == loan.user_id
                and borrow_record_to_model(record).is_overdue_at(now)
                for record in book.borrow_history
            ):
                raise DomainError(
                    f"User {loan.user_id} has an overdue copy of this book; return it first"
                )

            book.available_copies -= 1
            if book.available_copies == 0:
                book.availability = Availability.BORROWED

            book.borrow_history.append(
                BorrowRecordDB(
                    user_id=loan.user_id,
                    borrow_date=loan.borrow_date,
                    due_date=loan.due_date,
                    status=BorrowStatus.BORROWED,
                )
            )

            result = self.book_repo.save(book, "borrow book")
            span.set_attribute("available_copies", result.available_copies)

        record_loan_event("borrow")
        logger.info("User %s borrowed book %s (due %s)", loan.user_id, book_id, loan.due_date)
        return result

    def return_book(self, book_id: str, user_id: str) -> Book:
        """
        Take back the copy a user borrowed.

        The user's oldest open entry (borrowed or overdue) is closed.
        Manual ``reserved`` / ``maintenance`` states survive the return.

        Raises:
            NotFoundError: If the book does not exist
            DomainError: If the user has no open loan or every copy is already shelved
            ConcurrencyError: If the book changed since it was loaded
        """
        with trace_repository_operation("circulation", "return", table="borrow_records") as span:
            span.set_attribute("book_id", book_id)
            book = self.book_repo.get_for_update(book_id)

            record = next(
                (
                    r
                    for r in book.borrow_history
                    if r.user_id == user_id and r.status in OPEN_BORROW_STATUSES
                ),
                None,
            )
            if record is None:
                raise DomainError("No active borrow record found for this user")

            if book.available_copies >= book.total_copies:
                raise DomainError(
                    f"Cannot return book {book_id}: all {book.total_copies} copies are on the shelf"
                )

            was_overdue = record.status == BorrowStatus.OVERDUE
            record.return_date = self.clock.now()
            record.status = BorrowStatus.RETURNED

            book.available_copies += 1
            if book.availability == Availability.BORROWED:
                book.availability = Availability.AVAILABLE

            result = self.book_repo.save(book, "return book")
            span.set_attribute("available_copies", result.available_copies)
            span.set_attribute("was_overdue", was_overdue)

        record_loan_event("return")
        logger.info("User %s returned book %s", user_id, book_id)
        return result

    def mark_overdue(self, book_id: str | None = None) -> int:
        """
        Flag every borrowed loan past its due date as overdue.

        Args:
            book_id: Limit the sweep to one book

        Returns:
            Number of borrow records that changed status
        """
        now = self.clock.now()
        due = BookDB.borrow_history.any(
            (BorrowRecordDB.status == BorrowStatus.BORROWED) & (BorrowRecordDB.due_date < now)
        )
        criteria = [due] if book_id is None else [due, BookDB.id == book_id]

        with trace_repository_operation("circulation", "mark_overdue", table="borrow_records") as span:
            changed = 0
            for book in self.book_repo.load_where(*criteria):
                for record in book.borrow_history:
                    if record.status == BorrowStatus.BORROWED and record.due_date < now:
                        record.status = BorrowStatus.OVERDUE
                        changed += 1
                book.updated_at = now

            if changed:
                safe_commit(self.session, "mark overdue loans")
            span.set_attribute("records_changed", changed)

        record_loan_event("overdue", changed)
        if changed:
            logger.info("Marked %d loan(s) overdue", changed)
        return changed

    def get_active_loans(self, user_id: str) -> list[ActiveLoan]:
        """A user's open loans across all books, soonest due first."""
        now = self.clock.now()
        query = (
            select(BorrowRecordDB)
            .options(selectinload(BorrowRecordDB.book))
            .where(
                BorrowRecordDB.user_id == user_id,
                BorrowRecordDB.status.in_(OPEN_BORROW_STATUSES),
            )
            .order_by(BorrowRecordDB.due_date.asc(), BorrowRecordDB.id.asc())
        )
        records = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get active loans",
        )

        loans = []
        for record in records:
            model = borrow_record_to_model(record)
            loans.append(
                ActiveLoan(
                    **model.model_dump(),
                    book=BookSummary(
                        id=record.book.id, title=record.book.title, author=record.book.author
                    ),
                    overdue=model.is_overdue_at(now),
                )
            )
        return loans
