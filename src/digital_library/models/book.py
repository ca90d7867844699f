"""
Book models for the Digital Library.

A book is an aggregate: the catalog entry itself plus the records it owns,
its borrow-history ledger and its reviews. These models are what the
repositories return and what the tool handlers serialize:
- Book: catalog entry, copy inventory and embedded ledger
- BorrowRecord: one loan of one copy to one user
- Review: a user's rating and comment
- BookSummary: the title/author projection attached to annotation search hits

Validation rules live on the fields so malformed input is rejected with a
field-level message before anything reaches the database.
"""

import re
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Accepts ISBN-10 and ISBN-13, bare or with hyphen/space separators and an
# optional "ISBN", "ISBN-10:" or "ISBN-13:" prefix.
ISBN_PATTERN = re.compile(
    r"^(?:ISBN(?:-1[03])?:? )?(?=[0-9X]{10}$|(?=(?:[0-9]+[- ]){3})[- 0-9X]{13}$"
    r"|97[89][0-9]{10}$|(?=(?:[0-9]+[- ]){4})[- 0-9]{17}$)"
    r"(?:97[89][- ]?)?[0-9]{1,5}[- ]?[0-9]+[- ]?[0-9]+[- ]?[0-9X]$"
)


class Genre(str, Enum):
    """Catalog genres."""

    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    MYSTERY = "Mystery"
    ROMANCE = "Romance"
    SCIENCE_FICTION = "Science Fiction"
    FANTASY = "Fantasy"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SELF_HELP = "Self-Help"
    BUSINESS = "Business"
    TECHNOLOGY = "Technology"
    HEALTH = "Health"
    TRAVEL = "Travel"
    COOKING = "Cooking"
    ART = "Art"
    RELIGION = "Religion"
    PHILOSOPHY = "Philosophy"
    POETRY = "Poetry"
    DRAMA = "Drama"
    CHILDREN = "Children"
    YOUNG_ADULT = "Young Adult"


class Availability(str, Enum):
    """Lending state of a book."""

    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class BorrowStatus(str, Enum):
    """Status of a borrow record."""

    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


OPEN_BORROW_STATUSES = (BorrowStatus.BORROWED, BorrowStatus.OVERDUE)


def normalize_isbn(value: str) -> str:
    """Strip the optional prefix and separators so ISBNs compare equal."""
    value = re.sub(r"^ISBN(?:-1[03])?:? ", "", value.strip())
    return re.sub(r"[- ]", "", value)


def normalize_tags(tags: list[str], max_length: int | None = None) -> list[str]:
    """Lowercase, trim and deduplicate tags, keeping first-seen order."""
    seen: list[str] = []
    for raw in tags:
        tag = raw.strip().lower()
        if not tag:
            continue
        if max_length is not None and len(tag) > max_length:
            raise ValueError(f"Tag cannot exceed {max_length} characters")
        if tag not in seen:
            seen.append(tag)
    return seen


class BorrowRecord(BaseModel):
    """
    One loan in a book's borrow history.

    Records are appended when a copy is borrowed and closed (status
    ``returned``) when the same user brings it back. They are never removed.
    """

    id: int | None = Field(None, description="Ledger entry id, assigned on persist")

    user_id: str = Field(
        ...,
        description="Borrower's user id",
        min_length=1,
        max_length=64,
    )

    borrow_date: datetime = Field(..., description="When the copy was lent")

    due_date: datetime = Field(..., description="When the copy must be back")

    return_date: datetime | None = Field(None, description="When the copy came back")

    status: BorrowStatus = Field(default=BorrowStatus.BORROWED)

    @model_validator(mode="after")
    def validate_dates(self) -> "BorrowRecord":
        """Due and return dates cannot precede the borrow date."""
        if self.due_date < self.borrow_date:
            raise ValueError("Due date cannot be before borrow date")
        if self.return_date and self.return_date < self.borrow_date:
            raise ValueError("Return date cannot be before borrow date")
        return self

    @property
    def is_open(self) -> bool:
        """True while the copy is still out."""
        return self.status in OPEN_BORROW_STATUSES

    def is_overdue_at(self, moment: datetime) -> bool:
        """True when the loan is open and past its due date at ``moment``."""
        if self.status == BorrowStatus.OVERDUE:
            return True
        return self.status == BorrowStatus.BORROWED and self.due_date < moment


class Review(BaseModel):
    """A user's rating of a book."""

    id: int | None = None
    user_id: str = Field(..., min_length=1, max_length=64)
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=500)
    date: datetime

    model_config = ConfigDict(str_strip_whitespace=True)


class Rating(BaseModel):
    """Running average of a book's reviews."""

    average: float = Field(default=0.0, ge=0, le=5)
    count: int = Field(default=0, ge=0)


class BookBase(BaseModel):
    """
    Catalog fields shared by the book model and its create schema.

    Strings are trimmed before their length limits are checked.
    """

    title: str = Field(
        ...,
        description="Book title",
        min_length=1,
        max_length=200,
        examples=["The Left Hand of Darkness"],
    )

    author: str = Field(
        ...,
        description="Author name",
        min_length=1,
        max_length=100,
        examples=["Ursula K. Le Guin"],
    )

    isbn: str | None = Field(
        None,
        description="ISBN-10 or ISBN-13, hyphens and spaces allowed; unique when present",
        examples=["978-0-441-47812-5", "0441478123"],
    )

    description: str | None = Field(None, max_length=2000)

    genre: list[Genre] = Field(
        default_factory=list,
        description="Genres the book belongs to",
    )

    language: str = Field(default="English", min_length=1, max_length=50)

    published_date: date | None = None

    publisher: str | None = Field(None, max_length=100)

    page_count: int | None = Field(None, ge=1, description="Number of pages")

    cover_image: str | None = Field(
        None, description="Opaque reference to the cover image in the object store"
    )

    pdf_file: str | None = Field(
        None, description="Opaque reference to the document file in the object store"
    )

    availability: Availability = Field(default=Availability.AVAILABLE)

    total_copies: int = Field(default=1, ge=0, description="Copies owned")

    available_copies: int = Field(default=1, ge=0, description="Copies on the shelf")

    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        """Reject anything that is not a well-formed ISBN-10 or ISBN-13."""
        if v is None or v == "":
            return None
        if not ISBN_PATTERN.match(v):
            raise ValueError("Please enter a valid ISBN")
        return v

    @field_validator("genre")
    @classmethod
    def dedupe_genre(cls, v: list[Genre]) -> list[Genre]:
        """Genre is a set; keep the first occurrence of each value."""
        return list(dict.fromkeys(v))

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)

    @model_validator(mode="after")
    def validate_copies(self) -> "BookBase":
        """
        Keep the copy counters and availability consistent.

        ``available`` needs a copy on the shelf and ``borrowed`` needs none;
        ``reserved`` and ``maintenance`` are manual overrides.
        """
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        if self.availability == Availability.AVAILABLE and self.available_copies == 0:
            raise ValueError("A book with no copies on the shelf cannot be available")
        if self.availability == Availability.BORROWED and self.available_copies > 0:
            raise ValueError("A book with copies on the shelf cannot be borrowed")
        return self


class Book(BookBase):
    """
    A catalog entry together with its borrow history and reviews.

    ``version`` increases with every persisted change and is what the
    storage layer checks to reject writes based on a stale read.
    """

    id: str = Field(..., description="Opaque book id", examples=["book_3f2a9c0d1e"])

    added_by: str = Field(..., description="User who added the book", min_length=1)

    rating: Rating = Field(default_factory=Rating)

    borrow_history: list[BorrowRecord] = Field(default_factory=list)

    reviews: list[Review] = Field(default_factory=list)

    created_at: datetime

    updated_at: datetime

    version: int = Field(default=1, ge=1)

    @property
    def full_title(self) -> str:
        return f"{self.title} by {self.author}"

    @property
    def is_available(self) -> bool:
        """A copy can be lent: status is ``available`` and one is on the shelf."""
        return self.availability == Availability.AVAILABLE and self.available_copies > 0

    @property
    def borrowed_copies(self) -> int:
        return self.total_copies - self.available_copies

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "id": "book_3f2a9c0d1e7b4c55a1d0f6e2b9c8a7d6",
                "title": "The Left Hand of Darkness",
                "author": "Ursula K. Le Guin",
                "isbn": "978-0-441-47812-5",
                "genre": ["Science Fiction"],
                "availability": "available",
                "total_copies": 2,
                "available_copies": 1,
                "added_by": "user_librarian",
            }
        },
    )


class BookSummary(BaseModel):
    """Display projection of a book attached to annotation search results."""

    id: str
    title: str
    author: str
