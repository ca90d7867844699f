"""
Tests for circulation tools (borrow, return, overdue, active loans).

1. Input validation
2. Success scenarios
3. Error handling with errorType
4. State modifications
"""

from contextlib import contextmanager

import pytest

from digital_library.database.schema import Book as BookDB
from digital_library.tools.circulation import (
    borrow_book,
    borrow_book_handler,
    list_active_loans_handler,
    mark_overdue_handler,
    return_book_handler,
)


@pytest.fixture
def mock_get_session(test_db_session, monkeypatch):
    """Make the circulation handlers use the test session."""

    @contextmanager
    def _mock_get_session():
        yield test_db_session

    monkeypatch.setattr("digital_library.tools.circulation.get_session", _mock_get_session)
    return test_db_session


class TestBorrowBookTool:
    async def test_borrow_success(self, sample_book, mock_get_session):
        result = await borrow_book_handler({"book_id": sample_book.id, "user_id": "user_ada"})

        assert not result.get("isError")
        assert result["content"][0]["type"] == "text"
        assert "lent to user_ada" in result["content"][0]["text"]
        assert "Due date: January 29, 2024" in result["content"][0]["text"]

        data = result["data"]
        assert data["available_copies"] == 1
        assert data["availability"] == "available"
        assert data["record"]["user_id"] == "user_ada"
        assert data["record"]["status"] == "borrowed"
        assert data["record"]["due_date"] == "2024-01-29T10:00:00"

        assert mock_get_session.get(BookDB, sample_book.id).available_copies == 1

    async def test_missing_arguments(self, mock_get_session):
        result = await borrow_book_handler({"book_id": "book_x"})

        assert result["isError"]
        assert result["errorType"] == "validation_error"
        assert result["details"]["errors"][0]["field"] == "user_id"

    async def test_unknown_book(self, mock_get_session):
        result = await borrow_book_handler({"book_id": "book_missing", "user_id": "user_ada"})
        assert result["errorType"] == "not_found"
        assert "book_missing" in result["content"][0]["text"]

    async def test_unavailable_book(self, make_book, mock_get_session):
        book = make_book(availability="maintenance")
        result = await borrow_book_handler({"book_id": book.id, "user_id": "user_ada"})
        assert result["isError"]
        assert result["errorType"] == "domain_error"
        assert "not available" in result["content"][0]["text"]

    def test_tool_definition(self):
        assert borrow_book["name"] == "borrow_book"
        assert set(borrow_book["inputSchema"]["required"]) == {"book_id", "user_id"}
        assert borrow_book["handler"] is borrow_book_handler


class TestReturnBookTool:
    async def test_return_success(self, sample_book, mock_get_session, fixed_clock):
        await borrow_book_handler({"book_id": sample_book.id, "user_id": "user_ada"})
        fixed_clock.advance(days=3)

        result = await return_book_handler({"book_id": sample_book.id, "user_id": "user_ada"})

        assert not result.get("isError")
        assert result["data"]["available_copies"] == 2
        assert result["data"]["record"]["status"] == "returned"
        assert result["data"]["record"]["return_date"] == "2024-01-18T10:00:00"

    async def test_return_without_loan(self, sample_book, mock_get_session):
        result = await return_book_handler({"book_id": sample_book.id, "user_id": "user_ada"})
        assert result["errorType"] == "domain_error"
        assert "No active borrow record" in result["content"][0]["text"]


class TestOverdueTools:
    async def test_mark_overdue_and_list_loans(self, sample_book, mock_get_session, fixed_clock):
        await borrow_book_handler({"book_id": sample_book.id, "user_id": "user_ada"})
        fixed_clock.advance(days=15)

        result = await mark_overdue_handler({})
        assert result["data"] == {"records_changed": 1}
        assert "Marked 1 loan(s) overdue" in result["content"][0]["text"]

        loans = await list_active_loans_handler({"user_id": "user_ada"})
        assert len(loans["data"]["loans"]) == 1
        assert loans["data"]["loans"][0]["status"] == "overdue"
        assert loans["data"]["loans"][0]["book"]["title"] == sample_book.title
        assert "(OVERDUE)" in loans["content"][0]["text"]

    async def test_nothing_overdue(self, mock_get_session):
        result = await mark_overdue_handler({})
        assert result["data"]["records_changed"] == 0
        assert result["content"][0]["text"] == "No loans are past due."

    async def test_no_loans(self, mock_get_session):
        result = await list_active_loans_handler({"user_id": "user_ada"})
        assert result["data"]["loans"] == []
        assert "no books out" in result["content"][0]["text"]
