"""
User directory for the Digital Library.

Users are managed by an external service; the library only resolves ids to
display projections when it shows other people's annotations.
"""

import logging
from collections.abc import Iterable
from typing import Protocol

from .models.user import UserDisplay

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    """Resolves user ids to display projections."""

    def get_users(self, user_ids: Iterable[str]) -> dict[str, UserDisplay]:
        """Return the known users among ``user_ids``; unknown ids are left out."""
        ...


class InMemoryUserDirectory:
    """Directory backed by a dict; used in development and tests."""

    def __init__(self, users: Iterable[UserDisplay] = ()):
        self._users = {user.id: user for user in users}

    def add(self, user: UserDisplay) -> None:
        self._users[user.id] = user

    def get_users(self, user_ids: Iterable[str]) -> dict[str, UserDisplay]:
        found = {uid: self._users[uid] for uid in set(user_ids) if uid in self._users}
        logger.debug("Resolved %d user(s) from directory", len(found))
        return found


_directory: UserDirectory | None = None


def get_user_directory() -> UserDirectory:
    """Get the process-wide user directory (an empty in-memory one by default)."""
    global _directory  # noqa: PLW0603
    if _directory is None:
        _directory = InMemoryUserDirectory()
    return _directory


def set_user_directory(directory: UserDirectory) -> None:
    global _directory  # noqa: PLW0603
    _directory = directory


def reset_user_directory() -> None:
    global _directory  # noqa: PLW0603
    _directory = None
