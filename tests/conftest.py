"""Test configuration and fixtures for the Digital Library.

1. Isolated test databases - each test gets its own SQLite file
2. Configuration overrides - a config pointing at that file
3. A fixed clock - timestamps in assertions are exact
4. A user directory with a few known readers
"""

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import logfire
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from digital_library.clock import FixedClock, reset_clock, set_clock
from digital_library.config import LibraryConfig, reset_config, set_config
from digital_library.database.annotation_repository import (
    AnnotationCreateSchema,
    AnnotationRepository,
)
from digital_library.database.book_repository import BookCreateSchema, BookRepository
from digital_library.database.circulation_repository import CirculationRepository
from digital_library.database.session import DatabaseManager
from digital_library.models.annotation import Annotation
from digital_library.models.book import Book
from digital_library.models.user import UserDisplay
from digital_library.users import (
    InMemoryUserDirectory,
    reset_user_directory,
    set_user_directory,
)


@pytest.fixture(scope="session", autouse=True)
def local_logfire() -> None:
    """Keep spans and metrics in-process during tests."""
    logfire.configure(send_to_logfire=False, console=False)


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for each test."""
    return tmp_path / "test_library.db"


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    return f"sqlite:///{test_db_path}"


@pytest.fixture(autouse=True)
def test_config(test_db_path: Path) -> Generator[LibraryConfig, None, None]:
    """Install a configuration that points at the test database."""
    config = LibraryConfig(database_path=test_db_path)
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(autouse=True)
def fixed_clock() -> Generator[FixedClock, None, None]:
    """Freeze time at 2024-01-15 10:00 for every repository."""
    clock = FixedClock()
    set_clock(clock)
    yield clock
    reset_clock()


@pytest.fixture
def db_manager(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session on the test database."""
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def two_sessions(
    db_manager: DatabaseManager, test_database_url: str
) -> Generator[tuple[Session, Session], None, None]:
    """Two independent connections to the same database file, like two requests."""
    engine = create_engine(test_database_url)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    first, second = factory(), factory()
    yield first, second
    first.close()
    second.close()
    engine.dispose()


# === Users ===


@pytest.fixture
def user_directory() -> Generator[InMemoryUserDirectory, None, None]:
    directory = InMemoryUserDirectory(
        [
            UserDisplay(id="user_ada", username="ada", first_name="Ada", last_name="Lovelace"),
            UserDisplay(id="user_grace", username="grace", first_name="Grace", last_name="Hopper"),
            UserDisplay(id="user_alan", username="alan"),
        ]
    )
    set_user_directory(directory)
    yield directory
    reset_user_directory()


# === Repositories ===


@pytest.fixture
def book_repo(test_db_session: Session) -> BookRepository:
    return BookRepository(test_db_session)


@pytest.fixture
def circulation_repo(test_db_session: Session) -> CirculationRepository:
    return CirculationRepository(test_db_session)


@pytest.fixture
def annotation_repo(
    test_db_session: Session, user_directory: InMemoryUserDirectory
) -> AnnotationRepository:
    return AnnotationRepository(test_db_session, users=user_directory)


# === Sample Data ===


@pytest.fixture
def book_payload() -> dict[str, Any]:
    """Valid add_book arguments."""
    return {
        "title": "The Left Hand of Darkness",
        "author": "Ursula K. Le Guin",
        "isbn": "978-0-306-40615-7",
        "description": "An envoy visits the planet Gethen, whose people have no fixed sex.",
        "genre": ["Science Fiction", "Fiction"],
        "total_copies": 2,
        "available_copies": 2,
        "tags": ["Classic", "hugo"],
        "added_by": "user_librarian",
    }


@pytest.fixture
def make_book(book_repo: BookRepository) -> Callable[..., Book]:
    """Create a book; keyword arguments override the defaults."""

    def _make_book(**overrides: Any) -> Book:
        data = {
            "title": "Test Book",
            "author": "Test Author",
            "total_copies": 1,
            "available_copies": 1,
            "added_by": "user_librarian",
        }
        data.update(overrides)
        return book_repo.create(BookCreateSchema(**data))

    return _make_book


@pytest.fixture
def sample_book(make_book: Callable[..., Book], book_payload: dict[str, Any]) -> Book:
    return make_book(**book_payload)


@pytest.fixture
def make_annotation(annotation_repo: AnnotationRepository) -> Callable[..., Annotation]:
    """Create an annotation; ``book_id`` is required."""

    def _make_annotation(book_id: str, **overrides: Any) -> Annotation:
        data = {
            "user_id": "user_ada",
            "book_id": book_id,
            "type": "highlight",
            "content": {"selected_text": "Light is the left hand of darkness"},
            "position": {"page": 1},
        }
        data.update(overrides)
        return annotation_repo.create(AnnotationCreateSchema(**data))

    return _make_annotation
