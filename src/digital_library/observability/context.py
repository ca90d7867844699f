"""Context managers for tracing repository operations."""

from contextlib import contextmanager

import logfire


@contextmanager
def trace_repository_operation(repository: str, operation: str, table: str | None = None):
    """Wrap one repository operation in a span; failures are recorded on it."""
    with logfire.span(
        "db.{repository}.{operation}",
        repository=repository,
        operation=operation,
        db_table=table or repository,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("db.error", str(e))
            span.set_attribute("db.error_type", type(e).__name__)
            raise
