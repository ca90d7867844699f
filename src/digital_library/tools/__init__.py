"""
MCP Tools for the Digital Library.

Each tool is a dictionary with its name, description, JSON input schema and
async handler. Handlers validate their arguments, run one repository
operation in its own session and return either a result or a structured
error with an ``errorType``.
"""

from .annotations import (
    add_reply,
    create_annotation,
    delete_annotation,
    list_annotations_by_type,
    list_public_annotations,
    list_user_annotations,
    search_annotations,
    toggle_like,
    update_annotation,
)
from .catalog import (
    add_book,
    add_review,
    get_book,
    list_available_books,
    search_books,
    set_availability,
    update_book,
)
from .circulation import borrow_book, list_active_loans, mark_overdue, return_book

# Registered by the server in this order
all_tools = [
    add_book,
    update_book,
    get_book,
    list_available_books,
    search_books,
    add_review,
    set_availability,
    borrow_book,
    return_book,
    mark_overdue,
    list_active_loans,
    create_annotation,
    update_annotation,
    toggle_like,
    add_reply,
    delete_annotation,
    list_user_annotations,
    list_public_annotations,
    list_annotations_by_type,
    search_annotations,
]

__all__ = [
    "add_book",
    "add_reply",
    "add_review",
    "all_tools",
    "borrow_book",
    "create_annotation",
    "delete_annotation",
    "get_book",
    "list_active_loans",
    "list_annotations_by_type",
    "list_available_books",
    "list_public_annotations",
    "list_user_annotations",
    "mark_overdue",
    "return_book",
    "search_annotations",
    "search_books",
    "set_availability",
    "toggle_like",
    "update_annotation",
    "update_book",
]
