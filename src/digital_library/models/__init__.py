"""
Digital Library models.

Pydantic models for the two aggregates and the user projection:
- Book: catalog entry with borrow history and reviews
- Annotation: markup on a book page with replies and likes
- UserDisplay: what the library knows about a user
"""

from .annotation import (
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
from .book import (
    Availability,
    Book,
    BookBase,
    BookSummary,
    BorrowRecord,
    BorrowStatus,
    Genre,
    Rating,
    Review,
)
from .user import UserDisplay

__all__ = [
    "Annotation",
    "AnnotationBase",
    "AnnotationContent",
    "AnnotationSearchHit",
    "AnnotationType",
    "Availability",
    "Book",
    "BookBase",
    "BookSummary",
    "BorrowRecord",
    "BorrowStatus",
    "Coordinates",
    "Genre",
    "Like",
    "LikeToggleResult",
    "Position",
    "PublicAnnotation",
    "Rating",
    "Reply",
    "Review",
    "UserDisplay",
]
