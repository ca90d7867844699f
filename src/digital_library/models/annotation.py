"""
Annotation models for the Digital Library.

An annotation is a user's markup on a page of a book. It owns its replies
and likes; both are persisted with the annotation in one write.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .book import BookSummary, normalize_tags
from .user import UserDisplay

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"
DEFAULT_COLOR = "#ffff00"
MAX_TAG_LENGTH = 30


class AnnotationType(str, Enum):
    """Kinds of annotation."""

    HIGHLIGHT = "highlight"
    NOTE = "note"
    BOOKMARK = "bookmark"
    COMMENT = "comment"


class AnnotationContent(BaseModel):
    """The text an annotation is about and what the user wrote."""

    selected_text: str | None = Field(None, max_length=1000)
    user_note: str | None = Field(None, max_length=2000)

    model_config = ConfigDict(str_strip_whitespace=True)


class Coordinates(BaseModel):
    """Rectangle on the rendered page."""

    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None


class Position(BaseModel):
    """Where in the book the annotation sits."""

    page: int = Field(..., ge=1, description="Page number, starting at 1")
    start_offset: int | None = Field(None, ge=0)
    end_offset: int | None = Field(None, ge=0)
    coordinates: Coordinates | None = None

    @model_validator(mode="after")
    def validate_offsets(self) -> "Position":
        if (
            self.start_offset is not None
            and self.end_offset is not None
            and self.end_offset < self.start_offset
        ):
            raise ValueError("End offset cannot be before start offset")
        return self


class Reply(BaseModel):
    """A reply in an annotation's discussion thread."""

    id: int | None = None
    user_id: str = Field(..., min_length=1, max_length=64)
    content: str = Field(..., min_length=1, max_length=1000)
    created_at: datetime

    model_config = ConfigDict(str_strip_whitespace=True)


class Like(BaseModel):
    """One user's like; an annotation holds at most one per user."""

    user_id: str = Field(..., min_length=1, max_length=64)
    liked_at: datetime


class AnnotationBase(BaseModel):
    """Editable annotation fields shared by the model and its create schema."""

    type: AnnotationType

    content: AnnotationContent = Field(default_factory=AnnotationContent)

    position: Position

    color: str = Field(default=DEFAULT_COLOR, pattern=HEX_COLOR_PATTERN)

    is_private: bool = Field(default=True, description="Visible only to its author")

    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        """Tags are lowercased, trimmed, unique and at most 30 characters."""
        return normalize_tags(v, max_length=MAX_TAG_LENGTH)


class Annotation(AnnotationBase):
    """An annotation with its replies and likes."""

    id: str
    user_id: str = Field(..., min_length=1)
    book_id: str = Field(..., min_length=1)
    replies: list[Reply] = Field(default_factory=list)
    likes: list[Like] = Field(default_factory=list)
    is_deleted: bool = False
    last_modified: datetime
    created_at: datetime
    updated_at: datetime
    version: int = Field(default=1, ge=1)

    @property
    def like_count(self) -> int:
        return len(self.likes)

    @property
    def reply_count(self) -> int:
        return len(self.replies)

    def is_liked_by(self, user_id: str) -> bool:
        return any(like.user_id == user_id for like in self.likes)


class PublicAnnotation(Annotation):
    """Annotation with its author resolved for display."""

    author: UserDisplay | None = None


class AnnotationSearchHit(Annotation):
    """Annotation found by a text search, with its book's title and author."""

    book: BookSummary | None = None


class LikeToggleResult(BaseModel):
    """Outcome of toggling a like."""

    action: Literal["liked", "unliked"]
    like_count: int = Field(..., ge=0)
