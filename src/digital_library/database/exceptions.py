"""
Repository exceptions.

Every failure a repository reports is a ``RepositoryException``; callers
branch on the subclass to tell "no such record" from "rule violated" from
"someone else wrote first". Field-level validation failures are not here:
they are ``pydantic.ValidationError`` raised while building the input model.
"""


class RepositoryException(Exception):
    """Base exception for repository operations."""


class NotFoundError(RepositoryException):
    """Raised when an entity is not found."""


class DuplicateError(RepositoryException):
    """Raised when a uniqueness rule would be broken."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class DomainError(RepositoryException):
    """Raised when an operation breaks a business rule (e.g. borrowing an unavailable book)."""


class ConcurrencyError(RepositoryException):
    """Raised when a write was based on a stale read of the aggregate."""
