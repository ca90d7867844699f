"""
Annotation tools for the Digital Library.

Users highlight, note, bookmark and comment on pages of a book. Annotations
are private unless the author makes them public; public ones can be liked
and replied to by anyone.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..database.annotation_repository import (
    AnnotationCreateSchema,
    AnnotationRepository,
    AnnotationUpdateSchema,
)
from ..database.session import get_session
from ..models.annotation import Annotation, AnnotationType
from ..observability import trace_tool
from .responses import error_from_exception, success_response

logger = logging.getLogger(__name__)


def _annotation_data(annotation: Annotation) -> dict[str, Any]:
    data = annotation.model_dump(mode="json")
    data["like_count"] = annotation.like_count
    data["reply_count"] = annotation.reply_count
    return data


def _annotation_line(annotation: Annotation) -> str:
    text = annotation.content.user_note or annotation.content.selected_text or ""
    if len(text) > 60:
        text = text[:57] + "..."
    return f"- p.{annotation.position.page} [{annotation.type.value}] {text}".rstrip()


def _listing(annotations: list[Annotation], empty: str, title: str) -> dict[str, Any]:
    if not annotations:
        message = empty
    else:
        message = f"{title} ({len(annotations)}):\n" + "\n".join(
            _annotation_line(a) for a in annotations
        )
    return success_response(
        message, {"annotations": [_annotation_data(a) for a in annotations]}
    )


class AnnotationIdInput(BaseModel):
    annotation_id: str = Field(..., min_length=1, examples=["ann_9b1f0c2d3e4a5b6c7d8e9f0a1b2c3d4e"])


class AnnotationUserInput(AnnotationIdInput):
    user_id: str = Field(..., min_length=1, max_length=64)


# =============================================================================
# LIFECYCLE
# =============================================================================


@trace_tool("create_annotation")
async def create_annotation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Annotate a page of a book. Annotations start out private."""
    try:
        params = AnnotationCreateSchema.model_validate(arguments)
        with get_session() as session:
            annotation = AnnotationRepository(session).create(params)
    except Exception as e:
        return error_from_exception(e, "create annotation")

    visibility = "private" if annotation.is_private else "public"
    return success_response(
        f"Created {visibility} {annotation.type.value} on page {annotation.position.page} "
        f"({annotation.id}).",
        {"annotation": _annotation_data(annotation)},
    )


class UpdateAnnotationInput(AnnotationUpdateSchema):
    """Input schema for update_annotation: the annotation id plus any fields to change."""

    annotation_id: str = Field(..., min_length=1)


@trace_tool("update_annotation")
async def update_annotation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Edit content, position, color, privacy or tags."""
    try:
        params = UpdateAnnotationInput.model_validate(arguments)
        changes = AnnotationUpdateSchema.model_validate(
            params.model_dump(exclude_unset=True, exclude={"annotation_id"})
        )
        with get_session() as session:
            annotation = AnnotationRepository(session).update_content(
                params.annotation_id, changes
            )
    except Exception as e:
        return error_from_exception(e, "update annotation")

    return success_response(
        f"Updated annotation {annotation.id}.", {"annotation": _annotation_data(annotation)}
    )


@trace_tool("toggle_like")
async def toggle_like_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Like an annotation, or remove the like if the user already liked it."""
    try:
        params = AnnotationUserInput.model_validate(arguments)
        with get_session() as session:
            result = AnnotationRepository(session).toggle_like(
                params.annotation_id, params.user_id
            )
    except Exception as e:
        return error_from_exception(e, "toggle like")

    return success_response(
        f"{params.user_id} {result.action} annotation {params.annotation_id} "
        f"({result.like_count} like(s)).",
        result.model_dump(mode="json"),
    )


class AddReplyInput(AnnotationUserInput):
    content: str = Field(..., min_length=1, max_length=1000)


@trace_tool("add_reply")
async def add_reply_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Reply to an annotation."""
    try:
        params = AddReplyInput.model_validate(arguments)
        with get_session() as session:
            annotation = AnnotationRepository(session).add_reply(
                params.annotation_id, params.user_id, params.content
            )
    except Exception as e:
        return error_from_exception(e, "add reply")

    return success_response(
        f"Reply added; annotation {annotation.id} has {annotation.reply_count} reply(ies).",
        {"annotation": _annotation_data(annotation), "reply": annotation.replies[-1].model_dump(mode="json")},
    )


@trace_tool("delete_annotation")
async def delete_annotation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Soft-delete an annotation."""
    try:
        params = AnnotationIdInput.model_validate(arguments)
        with get_session() as session:
            annotation = AnnotationRepository(session).soft_delete(params.annotation_id)
    except Exception as e:
        return error_from_exception(e, "delete annotation")

    return success_response(
        f"Annotation {annotation.id} deleted.",
        {"annotation_id": annotation.id, "is_deleted": annotation.is_deleted},
    )


# =============================================================================
# QUERIES
# =============================================================================


class UserAnnotationsInput(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    book_id: str | None = Field(None, min_length=1, description="Only this book")


@trace_tool("list_user_annotations")
async def list_user_annotations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = UserAnnotationsInput.model_validate(arguments)
        with get_session() as session:
            annotations = AnnotationRepository(session).find_user_annotations(
                params.user_id, params.book_id
            )
    except Exception as e:
        return error_from_exception(e, "list user annotations")

    return _listing(annotations, f"{params.user_id} has no annotations.", "Annotations")


class PublicAnnotationsInput(BaseModel):
    book_id: str = Field(..., min_length=1)


@trace_tool("list_public_annotations")
async def list_public_annotations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Public annotations on a book with their authors' display names."""
    try:
        params = PublicAnnotationsInput.model_validate(arguments)
        with get_session() as session:
            annotations = AnnotationRepository(session).find_public_annotations(params.book_id)
    except Exception as e:
        return error_from_exception(e, "list public annotations")

    if not annotations:
        return success_response("No public annotations on this book.", {"annotations": []})

    lines = [
        f"{_annotation_line(a)} - {a.author.display_name if a.author else a.user_id}"
        for a in annotations
    ]
    return success_response(
        f"Public annotations ({len(annotations)}):\n" + "\n".join(lines),
        {"annotations": [_annotation_data(a) for a in annotations]},
    )


class AnnotationsByTypeInput(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    book_id: str = Field(..., min_length=1)
    type: AnnotationType


@trace_tool("list_annotations_by_type")
async def list_annotations_by_type_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        params = AnnotationsByTypeInput.model_validate(arguments)
        with get_session() as session:
            annotations = AnnotationRepository(session).find_by_type(
                params.user_id, params.book_id, params.type
            )
    except Exception as e:
        return error_from_exception(e, "list annotations by type")

    return _listing(
        annotations,
        f"No {params.type.value} annotations on this book.",
        f"{params.type.value.capitalize()} annotations",
    )


class SearchAnnotationsInput(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    query: str = Field(..., min_length=1, max_length=200, examples=["ambisexual"])


@trace_tool("search_annotations")
async def search_annotations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Search a user's annotations by text and tags, newest first."""
    try:
        params = SearchAnnotationsInput.model_validate(arguments)
        with get_session() as session:
            hits = AnnotationRepository(session).search_annotations(params.user_id, params.query)
    except Exception as e:
        return error_from_exception(e, "search annotations")

    if not hits:
        return success_response(
            f"No annotations match '{params.query}'.", {"query": params.query, "annotations": []}
        )

    lines = [f"{_annotation_line(h)} in {h.book.title if h.book else h.book_id}" for h in hits]
    return success_response(
        f"Found {len(hits)} annotation(s) matching '{params.query}':\n" + "\n".join(lines),
        {"query": params.query, "annotations": [_annotation_data(h) for h in hits]},
    )


# =============================================================================
# TOOL DEFINITIONS
# =============================================================================

create_annotation = {
    "name": "create_annotation",
    "description": (
        "Highlight, note, bookmark or comment on a page of a book. Annotations are "
        "private unless is_private is false."
    ),
    "inputSchema": AnnotationCreateSchema.model_json_schema(),
    "handler": create_annotation_handler,
}

update_annotation = {
    "name": "update_annotation",
    "description": "Edit an annotation's content, position, color, privacy or tags.",
    "inputSchema": UpdateAnnotationInput.model_json_schema(),
    "handler": update_annotation_handler,
}

toggle_like = {
    "name": "toggle_like",
    "description": "Like an annotation, or remove the like if the user already liked it.",
    "inputSchema": AnnotationUserInput.model_json_schema(),
    "handler": toggle_like_handler,
}

add_reply = {
    "name": "add_reply",
    "description": "Reply to an annotation's discussion thread.",
    "inputSchema": AddReplyInput.model_json_schema(),
    "handler": add_reply_handler,
}

delete_annotation = {
    "name": "delete_annotation",
    "description": "Delete an annotation. It disappears from every listing and search.",
    "inputSchema": AnnotationIdInput.model_json_schema(),
    "handler": delete_annotation_handler,
}

list_user_annotations = {
    "name": "list_user_annotations",
    "description": "List a user's annotations, optionally on one book, in page order.",
    "inputSchema": UserAnnotationsInput.model_json_schema(),
    "handler": list_user_annotations_handler,
}

list_public_annotations = {
    "name": "list_public_annotations",
    "description": "List everyone's public annotations on a book, with author names.",
    "inputSchema": PublicAnnotationsInput.model_json_schema(),
    "handler": list_public_annotations_handler,
}

list_annotations_by_type = {
    "name": "list_annotations_by_type",
    "description": "List a user's annotations of one type (highlight, note, bookmark, comment) on a book.",
    "inputSchema": AnnotationsByTypeInput.model_json_schema(),
    "handler": list_annotations_by_type_handler,
}

search_annotations = {
    "name": "search_annotations",
    "description": (
        "Search a user's annotations for text in the highlighted passage, the note or "
        "the tags. Case-insensitive; newest first."
    ),
    "inputSchema": SearchAnnotationsInput.model_json_schema(),
    "handler": search_annotations_handler,
}
