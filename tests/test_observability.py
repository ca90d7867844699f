"""Tests for tracing helpers, error mapping and server construction."""

import pytest
from pydantic import BaseModel, ValidationError

from digital_library.database.exceptions import (
    ConcurrencyError,
    DomainError,
    DuplicateError,
    NotFoundError,
    RepositoryException,
)
from digital_library.observability import ObservabilityConfig, trace_repository_operation, trace_tool
from digital_library.observability.decorators import _categorize_tool
from digital_library.server import create_server
from digital_library.tools.responses import error_from_exception


class _Strict(BaseModel):
    count: int


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("error", "error_type"),
        [
            (NotFoundError("Book x not found"), "not_found"),
            (DuplicateError("taken", field="isbn"), "duplicate"),
            (DomainError("rule"), "domain_error"),
            (ConcurrencyError("stale"), "concurrency_conflict"),
            (RepositoryException("db down"), "internal_error"),
            (RuntimeError("boom"), "internal_error"),
        ],
    )
    def test_error_types(self, error, error_type):
        try:
            raise error
        except Exception as e:
            response = error_from_exception(e, "do thing")
        assert response["isError"] is True
        assert response["errorType"] == error_type

    def test_validation_error_lists_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            _Strict(count="many")
        response = error_from_exception(exc_info.value, "count things")
        assert response["errorType"] == "validation_error"
        assert response["details"]["errors"][0]["field"] == "count"
        assert response["content"][0]["text"].startswith("Invalid count things parameters:")


class TestTracing:
    async def test_trace_tool_passes_result_through(self):
        @trace_tool("borrow_book")
        async def handler(arguments):
            return {"content": [], "data": arguments}

        assert await handler({"x": 1}) == {"content": [], "data": {"x": 1}}
        assert handler.__name__ == "handler"

    async def test_trace_tool_reraises(self):
        @trace_tool("add_book")
        async def handler(arguments):
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await handler({})

    def test_repository_span_reraises(self):
        with pytest.raises(DomainError):
            with trace_repository_operation("circulation", "borrow"):
                raise DomainError("no copies")

    @pytest.mark.parametrize(
        ("tool_name", "category"),
        [
            ("borrow_book", "circulation"),
            ("mark_overdue", "circulation"),
            ("toggle_like", "annotations"),
            ("search_books", "discovery"),
            ("add_book", "catalog"),
        ],
    )
    def test_tool_categories(self, tool_name, category):
        assert _categorize_tool(tool_name) == category

    def test_sending_needs_token(self):
        assert not ObservabilityConfig(token="", send_to_logfire=True).should_send
        assert ObservabilityConfig(token="abc", send_to_logfire=True).should_send


def test_create_server(test_config):
    mcp = create_server(test_config)
    assert mcp.name == "digital-library"
