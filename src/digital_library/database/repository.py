"""
Repository pattern implementation for the Digital Library.

Repositories are the only code that touches SQLAlchemy rows. They take
validated Pydantic input, perform one transaction per operation and return
Pydantic models, so callers get plain data that serializes cleanly.

The base repository provides the shared read operations and pagination;
subclasses add the aggregate-specific lifecycle operations.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import get_config
from .exceptions import (
    ConcurrencyError,
    DomainError,
    DuplicateError,
    NotFoundError,
    RepositoryException,
)
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

__all__ = [
    "LIKE_ESCAPE",
    "BaseRepository",
    "ConcurrencyError",
    "DomainError",
    "DuplicateError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
    "like_pattern",
]

LIKE_ESCAPE = "\\"


def like_pattern(text: str) -> str:
    """Build a `%text%` LIKE pattern with wildcard characters escaped."""
    escaped = (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        max_page_size = get_config().max_page_size
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > max_page_size:
            raise ValueError(f"Page size must be between 1 and {max_page_size}")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository.

    Holds the session and the clock every timestamp is taken from. All
    queries go through ``safe_query`` so driver errors surface as
    ``RepositoryException``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """Initialize repository with database session and time source."""
        self.session = session
        self.clock = clock or get_clock()

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @abstractmethod
    def _to_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert a database row (and its children) to the Pydantic model."""

    @property
    def entity_name(self) -> str:
        return self.model_class.__name__

    def _load_options(self) -> tuple:
        """Eager-load options applied to every aggregate query."""
        return ()

    def _select(self) -> Select[Any]:
        return select(self.model_class).options(*self._load_options())

    def _fetch(self, entity_id: str, error_msg: str) -> ModelType | None:
        query = self._select().where(self.model_class.id == str(entity_id))
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            error_msg,
        )

    def _get_or_raise(self, entity_id: str) -> ModelType:
        """Load the aggregate root for a write, or raise ``NotFoundError``."""
        db_obj = self._fetch(entity_id, f"Failed to get {self.entity_name} for update")
        if db_obj is None:
            raise NotFoundError(f"{self.entity_name} {entity_id} not found")
        return db_obj

    def get_by_id(self, entity_id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._fetch(entity_id, f"Failed to get {self.entity_name} by ID")
        if db_obj is None:
            return None
        return self._to_model(db_obj)

    def get_all(
        self, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[ResponseSchemaType]:
        """Get all entities, oldest first, one page at a time."""
        query = self._select().order_by(
            self.model_class.created_at.asc(), self.model_class.id.asc()
        )
        return self._paginate_query(query, pagination)

    def exists(self, entity_id: str) -> bool:
        """Check if entity exists by ID."""
        query = (
            select(func.count())
            .select_from(self.model_class)
            .where(self.model_class.id == str(entity_id))
        )
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check existence"
        )
        return count > 0

    def _all(self, query: Select[Any], error_msg: str) -> list[ModelType]:
        return list(
            safe_query(self.session, lambda s: s.execute(query).unique().scalars().all(), error_msg)
        )

    def _paginate_query(
        self, query: Select[Any], pagination: PaginationParams | None
    ) -> PaginatedResponse[ResponseSchemaType]:
        """Helper method to paginate a query."""
        if not pagination:
            pagination = PaginationParams(page_size=get_config().default_page_size)

        pagination.validate_params()

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to count in pagination",
            )
            or 0
        )

        page_query = query.offset(pagination.offset).limit(pagination.page_size)
        results = self._all(page_query, "Failed to get paginated results")

        return PaginatedResponse(
            items=[self._to_model(item) for item in results],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )
