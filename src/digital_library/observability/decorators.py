"""Decorators for tracing tool handlers."""

import functools
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire


def trace_tool(tool_name: str):
    """Run an async tool handler inside a span and record its outcome."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span(
                "tool.execution.{tool_name}",
                tool_name=tool_name,
                tool_category=_categorize_tool(tool_name),
            ) as span:
                start_time = datetime.now()

                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("tool.success", False)
                    span.set_attribute("tool.error", str(e))
                    raise

                span.set_attribute("tool.success", not _is_error(result))
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                if _is_error(result):
                    span.set_attribute("tool.error_type", result.get("errorType", "unknown"))

                return result

        return wrapper

    return decorator


def _categorize_tool(tool_name: str) -> str:
    """Categorize tools for grouping in dashboards."""
    if "borrow" in tool_name or "return" in tool_name or "overdue" in tool_name:
        return "circulation"
    if "annotation" in tool_name or "like" in tool_name or "reply" in tool_name:
        return "annotations"
    if "search" in tool_name or "list" in tool_name:
        return "discovery"
    return "catalog"


def _is_error(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("isError"))
