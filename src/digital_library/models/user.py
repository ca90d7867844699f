"""User display projection.

Users are owned by an external service; this is the only part of a user the
library ever sees.
"""

from pydantic import BaseModel, Field


class UserDisplay(BaseModel):
    """Display-safe view of a user: no email, no credentials."""

    id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1, max_length=50)
    first_name: str | None = None
    last_name: str | None = None
    profile_picture: str | None = None

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username
