"""
SQLAlchemy database schema for the Digital Library.

Each aggregate root owns child tables that are written together with it:

- books -> book_genres, borrow_records, reviews
- annotations -> annotation_tags, annotation_replies, annotation_likes

Consistency rules enforced here, independent of the application code:
1. Copy counters: 0 <= available_copies <= total_copies (CHECK constraints)
   and availability: ``available`` needs a shelf copy, ``borrowed`` none
2. ISBN uniqueness on the normalised key; NULL keys do not collide
3. One like per user per annotation (unique constraint)
4. Optimistic concurrency: ``version`` is the mapper's version_id_col, so an
   UPDATE based on a stale read matches no row and is rejected
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

from ..models.annotation import AnnotationType
from ..models.book import Availability, BorrowStatus, Genre

# Base class for all SQLAlchemy models
Base = declarative_base()


def _enum_type(enum_cls: type, name: str) -> Enum:
    """Store enum *values* ("Science Fiction"), not member names."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Book(Base):
    """
    Books table - the catalog entry and its copy inventory.

    Child rows (genres, borrow records, reviews) are loaded with the book and
    cascade with it. Any change to a child also touches ``updated_at`` so the
    version check covers the whole aggregate.
    """

    __tablename__ = "books"

    id = Column(String(40), primary_key=True)
    title = Column(String(200), nullable=False)
    author = Column(String(100), nullable=False)
    isbn = Column(String(32), nullable=True)
    # Normalised ISBN (no prefix, no separators); uniqueness lives here
    isbn_key = Column(String(13), nullable=True)
    description = Column(Text, nullable=True)
    language = Column(String(50), nullable=False, default="English")
    published_date = Column(Date, nullable=True)
    publisher = Column(String(100), nullable=True)
    page_count = Column(Integer, nullable=True)
    cover_image = Column(String(500), nullable=True)
    pdf_file = Column(String(500), nullable=True)

    availability = Column(
        _enum_type(Availability, "availability"),
        nullable=False,
        default=Availability.AVAILABLE,
    )
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)

    rating_average = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)

    tags = Column(JSON, nullable=False, default=list)

    added_by = Column(String(64), nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now())

    version = Column(Integer, nullable=False)

    # Relationships
    genres = relationship(
        "BookGenre",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="BookGenre.id",
    )
    borrow_history = relationship(
        "BorrowRecord",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="BorrowRecord.id",
    )
    reviews = relationship(
        "Review",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="Review.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_books_isbn", "isbn_key", unique=True),
        Index("idx_book_title", "title"),
        Index("idx_book_author", "author"),
        Index("idx_book_availability", "availability"),
        Index("idx_book_rating", "rating_average"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
        CheckConstraint(
            "availability != 'available' OR available_copies > 0",
            name="check_available_has_shelf_copy",
        ),
        CheckConstraint(
            "availability != 'borrowed' OR available_copies = 0",
            name="check_borrowed_has_no_shelf_copy",
        ),
        CheckConstraint(
            "rating_average >= 0 AND rating_average <= 5", name="check_rating_average_range"
        ),
        CheckConstraint("rating_count >= 0", name="check_rating_count_non_negative"),
        CheckConstraint("page_count IS NULL OR page_count >= 1", name="check_page_count_positive"),
    )

    @validates("available_copies", "total_copies")
    def validate_copy_count(self, key, value):
        """Copy counters can never go negative."""
        if value is not None and value < 0:
            raise ValueError(f"{key} cannot be negative")
        return value

    @property
    def genre_values(self) -> list[Genre]:
        return [entry.genre for entry in self.genres]


class BookGenre(Base):
    """Genre membership of a book; indexed so books can be listed by genre."""

    __tablename__ = "book_genres"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(String(40), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    genre = Column(_enum_type(Genre, "genre"), nullable=False)

    book = relationship("Book", back_populates="genres")

    __table_args__ = (
        UniqueConstraint("book_id", "genre", name="unique_book_genre"),
        Index("idx_book_genre", "genre"),
    )


class BorrowRecord(Base):
    """One loan in a book's ledger."""

    __tablename__ = "borrow_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(String(40), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    borrow_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(
        _enum_type(BorrowStatus, "borrow_status"),
        nullable=False,
        default=BorrowStatus.BORROWED,
    )

    book = relationship("Book", back_populates="borrow_history")

    __table_args__ = (
        Index("idx_borrow_book", "book_id"),
        Index("idx_borrow_user_status", "user_id", "status"),
        CheckConstraint("due_date >= borrow_date", name="check_due_after_borrow"),
    )


class Review(Base):
    """A user's rating of a book; one per user per book."""

    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(String(40), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(String(500), nullable=True)
    date = Column(DateTime, nullable=False)

    book = relationship("Book", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("book_id", "user_id", name="unique_review_per_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="check_review_rating_range"),
    )


class Annotation(Base):
    """
    Annotations table - a user's markup on a page of a book.

    Content, position and presentation are flattened into columns; tags,
    replies and likes are child tables owned by the annotation.
    """

    __tablename__ = "annotations"

    id = Column(String(40), primary_key=True)
    user_id = Column(String(64), nullable=False)
    book_id = Column(String(40), ForeignKey("books.id"), nullable=False)
    type = Column(_enum_type(AnnotationType, "annotation_type"), nullable=False)

    selected_text = Column(String(1000), nullable=True)
    user_note = Column(String(2000), nullable=True)

    page = Column(Integer, nullable=False)
    start_offset = Column(Integer, nullable=True)
    end_offset = Column(Integer, nullable=True)
    coord_x = Column(Float, nullable=True)
    coord_y = Column(Float, nullable=True)
    coord_width = Column(Float, nullable=True)
    coord_height = Column(Float, nullable=True)

    color = Column(String(7), nullable=False, default="#ffff00")
    is_private = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    last_modified = Column(DateTime, nullable=False, default=func.now())
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now())

    version = Column(Integer, nullable=False)

    # Relationships
    book = relationship("Book")
    tags = relationship(
        "AnnotationTag",
        back_populates="annotation",
        cascade="all, delete-orphan",
        order_by="AnnotationTag.id",
    )
    replies = relationship(
        "AnnotationReply",
        back_populates="annotation",
        cascade="all, delete-orphan",
        order_by="AnnotationReply.id",
    )
    likes = relationship(
        "AnnotationLike",
        back_populates="annotation",
        cascade="all, delete-orphan",
        order_by="AnnotationLike.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_annotation_user_book", "user_id", "book_id"),
        Index("idx_annotation_book_page", "book_id", "page"),
        Index("idx_annotation_type", "type"),
        Index("idx_annotation_private", "is_private"),
        Index("idx_annotation_created", "created_at"),
        CheckConstraint("page >= 1", name="check_page_positive"),
        CheckConstraint("start_offset IS NULL OR start_offset >= 0", name="check_start_offset"),
        CheckConstraint("end_offset IS NULL OR end_offset >= 0", name="check_end_offset"),
    )

    @property
    def tag_values(self) -> list[str]:
        return [entry.tag for entry in self.tags]


class AnnotationTag(Base):
    """Tag attached to an annotation."""

    __tablename__ = "annotation_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    annotation_id = Column(
        String(40), ForeignKey("annotations.id", ondelete="CASCADE"), nullable=False
    )
    tag = Column(String(30), nullable=False)

    annotation = relationship("Annotation", back_populates="tags")

    __table_args__ = (
        UniqueConstraint("annotation_id", "tag", name="unique_annotation_tag"),
        Index("idx_annotation_tag", "tag"),
    )

    @validates("tag")
    def validate_tag(self, key, value):  # noqa: ARG002
        """Tags are stored lowercased and trimmed."""
        return value.strip().lower()


class AnnotationReply(Base):
    """Reply in an annotation's thread, kept in insertion order."""

    __tablename__ = "annotation_replies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    annotation_id = Column(
        String(40), ForeignKey("annotations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(64), nullable=False)
    content = Column(String(1000), nullable=False)
    created_at = Column(DateTime, nullable=False)

    annotation = relationship("Annotation", back_populates="replies")

    __table_args__ = (Index("idx_reply_annotation", "annotation_id"),)


class AnnotationLike(Base):
    """A user's like of an annotation."""

    __tablename__ = "annotation_likes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    annotation_id = Column(
        String(40), ForeignKey("annotations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(64), nullable=False)
    liked_at = Column(DateTime, nullable=False)

    annotation = relationship("Annotation", back_populates="likes")

    __table_args__ = (
        UniqueConstraint("annotation_id", "user_id", name="unique_like_per_user"),
    )
