"""
Database package for the Digital Library.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and error translation (session.py)
- Repositories for books, circulation and annotations
"""

from .annotation_repository import (
    AnnotationCreateSchema,
    AnnotationRepository,
    AnnotationUpdateSchema,
)
from .book_repository import BookCreateSchema, BookRepository, BookUpdateSchema
from .circulation_repository import ActiveLoan, CirculationRepository
from .exceptions import (
    ConcurrencyError,
    DomainError,
    DuplicateError,
    NotFoundError,
    RepositoryException,
)
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import Base
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)

__all__ = [
    "ActiveLoan",
    "AnnotationCreateSchema",
    "AnnotationRepository",
    "AnnotationUpdateSchema",
    "Base",
    "BaseRepository",
    "BookCreateSchema",
    "BookRepository",
    "BookUpdateSchema",
    "CirculationRepository",
    "ConcurrencyError",
    "DatabaseManager",
    "DomainError",
    "DuplicateError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RepositoryException",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
