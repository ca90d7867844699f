"""
Annotation repository implementation for the Digital Library.

Annotations are written as one aggregate: the annotation row plus its tags,
replies and likes. Each mutation after creation stamps ``last_modified``
and bumps the version, so two requests editing the same annotation cannot
silently overwrite each other.

Deleted annotations are soft-deleted. They stay in storage but are hidden
from every query below and refuse further edits.
"""

import logging
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..clock import Clock
from ..models.annotation import (
    DEFAULT_COLOR,
    HEX_COLOR_PATTERN,
    MAX_TAG_LENGTH,
    Annotation,
    AnnotationBase,
    AnnotationContent,
    AnnotationSearchHit,
    AnnotationType,
    Coordinates,
    Like,
    LikeToggleResult,
    Position,
    PublicAnnotation,
    Reply,
)
from ..models.book import BookSummary, normalize_tags
from ..observability import record_annotation_event, trace_repository_operation
from ..users import UserDirectory, get_user_directory
from .exceptions import ConcurrencyError, NotFoundError
from .repository import LIKE_ESCAPE, BaseRepository, like_pattern
from .schema import Annotation as AnnotationDB
from .schema import AnnotationLike as AnnotationLikeDB
from .schema import AnnotationReply as AnnotationReplyDB
from .schema import AnnotationTag as AnnotationTagDB
from .schema import Book as BookDB
from .session import safe_commit

logger = logging.getLogger(__name__)


class AnnotationCreateSchema(AnnotationBase):
    """Schema for creating an annotation."""

    user_id: str = Field(..., min_length=1, max_length=64)
    book_id: str = Field(..., min_length=1, max_length=40)


class AnnotationUpdateSchema(BaseModel):
    """Schema for editing an annotation - all fields optional, owner and book are fixed."""

    content: AnnotationContent | None = None
    position: Position | None = None
    color: str | None = Field(None, pattern=HEX_COLOR_PATTERN)
    is_private: bool | None = None
    tags: list[str] | None = None

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else normalize_tags(v, max_length=MAX_TAG_LENGTH)


def new_annotation_id() -> str:
    return f"ann_{uuid.uuid4().hex}"


class AnnotationRepository(BaseRepository[AnnotationDB, Annotation]):
    """Repository for annotation data access."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        users: UserDirectory | None = None,
    ):
        super().__init__(session, clock)
        self.users = users or get_user_directory()

    @property
    def model_class(self):
        return AnnotationDB

    def _load_options(self) -> tuple:
        return (
            selectinload(AnnotationDB.tags),
            selectinload(AnnotationDB.replies),
            selectinload(AnnotationDB.likes),
        )

    def _to_model(self, db_obj: AnnotationDB) -> Annotation:
        return Annotation(**self._model_fields(db_obj))

    def _model_fields(self, db_obj: AnnotationDB) -> dict:
        coordinates = None
        if any(
            value is not None
            for value in (db_obj.coord_x, db_obj.coord_y, db_obj.coord_width, db_obj.coord_height)
        ):
            coordinates = Coordinates(
                x=db_obj.coord_x,
                y=db_obj.coord_y,
                width=db_obj.coord_width,
                height=db_obj.coord_height,
            )

        return {
            "id": db_obj.id,
            "user_id": db_obj.user_id,
            "book_id": db_obj.book_id,
            "type": db_obj.type,
            "content": AnnotationContent(
                selected_text=db_obj.selected_text, user_note=db_obj.user_note
            ),
            "position": Position(
                page=db_obj.page,
                start_offset=db_obj.start_offset,
                end_offset=db_obj.end_offset,
                coordinates=coordinates,
            ),
            "color": db_obj.color,
            "is_private": db_obj.is_private,
            "tags": db_obj.tag_values,
            "replies": [
                Reply(id=r.id, user_id=r.user_id, content=r.content, created_at=r.created_at)
                for r in db_obj.replies
            ],
            "likes": [Like(user_id=like.user_id, liked_at=like.liked_at) for like in db_obj.likes],
            "is_deleted": db_obj.is_deleted,
            "last_modified": db_obj.last_modified,
            "created_at": db_obj.created_at,
            "updated_at": db_obj.updated_at,
            "version": db_obj.version,
        }

    # --- Lifecycle -----------------------------------------------------

    def create(self, data: AnnotationCreateSchema) -> Annotation:
        """
        Create an annotation on an existing book.

        Raises:
            NotFoundError: If the book does not exist
        """
        if self.session.get(BookDB, data.book_id) is None:
            raise NotFoundError(f"Book {data.book_id} not found")

        now = self.clock.now()
        annotation = AnnotationDB(
            id=new_annotation_id(),
            user_id=data.user_id,
            book_id=data.book_id,
            type=data.type,
            color=data.color or DEFAULT_COLOR,
            is_private=data.is_private,
            is_deleted=False,
            last_modified=now,
            created_at=now,
            updated_at=now,
        )
        self._apply_content(annotation, data.content)
        self._apply_position(annotation, data.position)
        annotation.tags = [AnnotationTagDB(tag=tag) for tag in data.tags]
        self.session.add(annotation)

        safe_commit(self.session, "create annotation")

        record_annotation_event("create", data.type.value)
        logger.info("Created %s annotation %s on book %s", data.type.value, annotation.id, data.book_id)
        return self._to_model(annotation)

    def get_by_id(self, entity_id: str, include_deleted: bool = False) -> Annotation | None:
        annotation = super().get_by_id(entity_id)
        if annotation is None or (annotation.is_deleted and not include_deleted):
            return None
        return annotation

    def update_content(self, annotation_id: str, data: AnnotationUpdateSchema) -> Annotation:
        """
        Edit content, position, color, privacy or tags.

        Raises:
            NotFoundError: If the annotation does not exist or was deleted
        """
        annotation = self._get_live(annotation_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return self._to_model(annotation)

        if data.content is not None:
            # Only the content fields that were sent are replaced
            for field in data.content.model_fields_set:
                setattr(annotation, field, getattr(data.content, field))
        if data.position is not None:
            self._apply_position(annotation, data.position)
        if data.color is not None:
            annotation.color = data.color
        if data.is_private is not None:
            annotation.is_private = data.is_private
        if data.tags is not None:
            self._replace_tags(annotation, data.tags)

        result = self._save(annotation, "update annotation")
        record_annotation_event("update", annotation.type.value)
        return result

    def toggle_like(self, annotation_id: str, user_id: str) -> LikeToggleResult:
        """
        Like the annotation, or take the like back if ``user_id`` already liked it.

        Raises:
            NotFoundError: If the annotation does not exist or was deleted
        """
        like = Like(user_id=user_id, liked_at=self.clock.now())

        with trace_repository_operation("annotations", "toggle_like", table="annotation_likes"):
            annotation = self._get_live(annotation_id)

            existing = next((lk for lk in annotation.likes if lk.user_id == like.user_id), None)
            if existing is not None:
                annotation.likes.remove(existing)
                action = "unliked"
            else:
                annotation.likes.append(
                    AnnotationLikeDB(user_id=like.user_id, liked_at=like.liked_at)
                )
                action = "liked"

            result = self._save(annotation, "toggle like")

        record_annotation_event("like" if action == "liked" else "unlike", annotation.type.value)
        return LikeToggleResult(action=action, like_count=result.like_count)

    def add_reply(self, annotation_id: str, user_id: str, content: str) -> Annotation:
        """
        Append a reply to the annotation's thread.

        Replies are never timestamped before the previous one.

        Raises:
            NotFoundError: If the annotation does not exist or was deleted
        """
        now = self.clock.now()
        reply = Reply(user_id=user_id, content=content, created_at=now)

        with trace_repository_operation("annotations", "add_reply", table="annotation_replies"):
            annotation = self._get_live(annotation_id)

            created_at = reply.created_at
            if annotation.replies and annotation.replies[-1].created_at > created_at:
                created_at = annotation.replies[-1].created_at

            annotation.replies.append(
                AnnotationReplyDB(user_id=reply.user_id, content=reply.content, created_at=created_at)
            )
            result = self._save(annotation, "add reply")

        record_annotation_event("reply", annotation.type.value)
        return result

    def soft_delete(self, annotation_id: str) -> Annotation:
        """
        Mark the annotation deleted. Deleting twice is a no-op.

        Raises:
            NotFoundError: If the annotation does not exist
        """
        annotation = self._get_or_raise(annotation_id)
        if annotation.is_deleted:
            return self._to_model(annotation)

        annotation.is_deleted = True
        result = self._save(annotation, "delete annotation")
        record_annotation_event("delete", annotation.type.value)
        logger.info("Soft-deleted annotation %s", annotation_id)
        return result

    # --- Queries -------------------------------------------------------

    def find_user_annotations(self, user_id: str, book_id: str | None = None) -> list[Annotation]:
        """A user's annotations, optionally on one book, in reading order."""
        query = self._live().where(AnnotationDB.user_id == user_id)
        if book_id is not None:
            query = query.where(AnnotationDB.book_id == book_id)
        query = query.order_by(
            AnnotationDB.page.asc(), AnnotationDB.created_at.asc(), AnnotationDB.id.asc()
        )
        return [self._to_model(a) for a in self._all(query, "Failed to find user annotations")]

    def find_public_annotations(self, book_id: str) -> list[PublicAnnotation]:
        """Everyone's public annotations on a book, with their authors resolved."""
        query = (
            self._live()
            .where(AnnotationDB.book_id == book_id, AnnotationDB.is_private.is_(False))
            .order_by(
                AnnotationDB.page.asc(), AnnotationDB.created_at.asc(), AnnotationDB.id.asc()
            )
        )
        rows = self._all(query, "Failed to find public annotations")
        authors = self.users.get_users({row.user_id for row in rows}) if rows else {}

        return [
            PublicAnnotation(**self._model_fields(row), author=authors.get(row.user_id))
            for row in rows
        ]

    def find_by_type(
        self, user_id: str, book_id: str, annotation_type: AnnotationType
    ) -> list[Annotation]:
        """A user's annotations of one type on one book, in reading order."""
        query = (
            self._live()
            .where(
                AnnotationDB.user_id == user_id,
                AnnotationDB.book_id == book_id,
                AnnotationDB.type == AnnotationType(annotation_type),
            )
            .order_by(AnnotationDB.page.asc(), AnnotationDB.created_at.asc(), AnnotationDB.id.asc())
        )
        return [self._to_model(a) for a in self._all(query, "Failed to find annotations by type")]

    def search_annotations(self, user_id: str, query_text: str) -> list[AnnotationSearchHit]:
        """
        Search a user's annotations for a literal, case-insensitive substring.

        Matches selected text, the user's note and tags. Newest first; each
        hit carries its book's title and author.
        """
        text = (query_text or "").strip()
        if not text:
            return []

        pattern = like_pattern(text)
        query = (
            self._live()
            .options(selectinload(AnnotationDB.book))
            .where(
                AnnotationDB.user_id == user_id,
                or_(
                    AnnotationDB.selected_text.ilike(pattern, escape=LIKE_ESCAPE),
                    AnnotationDB.user_note.ilike(pattern, escape=LIKE_ESCAPE),
                    AnnotationDB.tags.any(AnnotationTagDB.tag.ilike(pattern, escape=LIKE_ESCAPE)),
                ),
            )
            .order_by(AnnotationDB.created_at.desc(), AnnotationDB.id.desc())
        )

        with trace_repository_operation("annotations", "search") as span:
            rows = self._all(query, "Failed to search annotations")
            span.set_attribute("result.match_count", len(rows))

        return [
            AnnotationSearchHit(
                **self._model_fields(row),
                book=BookSummary(id=row.book.id, title=row.book.title, author=row.book.author)
                if row.book is not None
                else None,
            )
            for row in rows
        ]

    # --- Helpers -------------------------------------------------------

    def _live(self):
        return self._select().where(AnnotationDB.is_deleted.is_(False))

    def _get_live(self, annotation_id: str) -> AnnotationDB:
        annotation = self._get_or_raise(annotation_id)
        if annotation.is_deleted:
            raise NotFoundError(f"Annotation {annotation_id} not found")
        return annotation

    def _save(self, annotation: AnnotationDB, operation: str) -> Annotation:
        """Stamp the modification time and commit the aggregate."""
        now = self.clock.now()
        annotation.last_modified = now
        annotation.updated_at = now
        try:
            safe_commit(self.session, operation)
        except IntegrityError as e:
            # Only the like/tag unique constraints can fire here: a racing write
            raise ConcurrencyError(
                f"Cannot {operation}: the annotation was modified by another request, "
                "reload and retry"
            ) from e
        return self._to_model(annotation)

    @staticmethod
    def _apply_content(annotation: AnnotationDB, content: AnnotationContent) -> None:
        annotation.selected_text = content.selected_text
        annotation.user_note = content.user_note

    @staticmethod
    def _apply_position(annotation: AnnotationDB, position: Position) -> None:
        annotation.page = position.page
        annotation.start_offset = position.start_offset
        annotation.end_offset = position.end_offset
        coordinates = position.coordinates or Coordinates()
        annotation.coord_x = coordinates.x
        annotation.coord_y = coordinates.y
        annotation.coord_width = coordinates.width
        annotation.coord_height = coordinates.height

    @staticmethod
    def _replace_tags(annotation: AnnotationDB, tags: list[str]) -> None:
        """Diff the tag set; the unit of work inserts before it deletes."""
        for entry in list(annotation.tags):
            if entry.tag not in tags:
                annotation.tags.remove(entry)
        present = {entry.tag for entry in annotation.tags}
        for tag in tags:
            if tag not in present:
                annotation.tags.append(AnnotationTagDB(tag=tag))
