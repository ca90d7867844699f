"""Tests for the book repository: catalog, reviews, availability and search."""

import pytest
from pydantic import ValidationError

from digital_library.database import (
    BookCreateSchema,
    BookRepository,
    BookUpdateSchema,
    DomainError,
    DuplicateError,
    NotFoundError,
    PaginationParams,
)
from digital_library.models.book import Availability, Genre


class TestCreate:
    def test_create_book(self, book_repo, book_payload, fixed_clock):
        book = book_repo.create(BookCreateSchema(**book_payload))

        assert book.id.startswith("book_")
        assert len(book.id) == len("book_") + 32
        assert book.title == "The Left Hand of Darkness"
        assert book.genre == [Genre.SCIENCE_FICTION, Genre.FICTION]
        assert book.tags == ["classic", "hugo"]
        assert book.added_by == "user_librarian"
        assert book.rating.count == 0
        assert book.created_at == book.updated_at == fixed_clock.now()
        assert book.version == 1

    def test_duplicate_isbn_is_field_attributable(self, book_repo, sample_book):
        duplicate = BookCreateSchema(
            title="Another", author="Someone", isbn="9780306406157", added_by="user_x"
        )
        with pytest.raises(DuplicateError) as exc_info:
            book_repo.create(duplicate)
        assert exc_info.value.field == "isbn"

    def test_books_without_isbn_do_not_collide(self, make_book):
        first = make_book(title="No ISBN 1")
        second = make_book(title="No ISBN 2")
        assert first.isbn is None and second.isbn is None

    def test_invalid_input_never_reaches_storage(self, book_repo):
        with pytest.raises(ValidationError):
            BookCreateSchema(title="T", author="A", isbn="123456789", added_by="u")
        assert book_repo.get_all().total == 0

    def test_availability_must_match_shelf(self, book_repo):
        with pytest.raises(ValidationError, match="cannot be available"):
            BookCreateSchema(title="T", author="A", available_copies=0, added_by="u")
        with pytest.raises(ValidationError, match="cannot be borrowed"):
            BookCreateSchema(title="T", author="A", availability="borrowed", added_by="u")
        assert book_repo.get_all().total == 0

    def test_create_with_every_copy_out(self, book_repo):
        book = book_repo.create(
            BookCreateSchema(
                title="T", author="A", available_copies=0, availability="borrowed", added_by="u"
            )
        )
        assert book.availability == Availability.BORROWED
        assert not book.is_available


class TestQueries:
    def test_get_by_id(self, book_repo, sample_book):
        assert book_repo.get_by_id(sample_book.id) == sample_book
        assert book_repo.get_by_id("book_missing") is None

    def test_get_by_isbn_is_normalized(self, book_repo, sample_book):
        assert book_repo.get_by_isbn("9780306406157").id == sample_book.id
        assert book_repo.get_by_isbn("978 0 306 40615 7").id == sample_book.id
        assert book_repo.get_by_isbn("ISBN 978-0-306-40615-7").id == sample_book.id
        assert book_repo.get_by_isbn("0306406152") is None

    def test_get_all_paginates(self, book_repo, make_book, fixed_clock):
        for i in range(5):
            make_book(title=f"Book {i}")
            fixed_clock.advance(minutes=1)

        page = book_repo.get_all(PaginationParams(page=2, page_size=2))
        assert page.total == 5
        assert [b.title for b in page.items] == ["Book 2", "Book 3"]
        assert page.total_pages == 3
        assert page.has_next and page.has_previous

    def test_page_size_limit(self, book_repo):
        with pytest.raises(ValueError, match="Page size must be between 1 and 100"):
            book_repo.get_all(PaginationParams(page_size=101))

    def test_get_by_genre(self, book_repo, make_book):
        make_book(title="Dune", genre=["Science Fiction"])
        make_book(title="Emma", genre=["Romance", "Fiction"])
        make_book(title="Anathem", genre=["Science Fiction", "Philosophy"])

        result = book_repo.get_by_genre(Genre.SCIENCE_FICTION)
        assert [b.title for b in result.items] == ["Anathem", "Dune"]

    def test_find_available(self, book_repo, make_book):
        make_book(title="On Shelf")
        make_book(title="All Out", total_copies=1, available_copies=0, availability="borrowed")
        make_book(title="Being Repaired", availability="maintenance")

        assert [b.title for b in book_repo.find_available()] == ["On Shelf"]


class TestSearch:
    def test_ranking_by_field_weight(self, book_repo, make_book):
        make_book(title="Cooking Basics", author="Ann Dragon", description="No dragons here")
        make_book(title="Dragon Tales", author="Jo Smith")
        make_book(title="A Quiet Life", author="Sam Lee", description="A dragon naps.")

        results = book_repo.search_books("dragon")
        assert [b.title for b in results] == ["Dragon Tales", "Cooking Basics", "A Quiet Life"]

    def test_only_whole_words_score(self, book_repo, make_book):
        make_book(title="Dragonfly Summer")
        assert book_repo.search_books("dragon") == []

    def test_ties_broken_by_title(self, book_repo, make_book):
        make_book(title="Zebra Moon")
        make_book(title="Apple Moon")
        assert [b.title for b in book_repo.search_books("moon")] == ["Apple Moon", "Zebra Moon"]

    def test_multi_term_scores_add_up(self, book_repo, make_book):
        make_book(title="Left Hand", author="Ursula Le Guin")
        make_book(title="Left Behind", author="Tim Jenkins")
        results = book_repo.search_books("left guin")
        assert [b.title for b in results] == ["Left Hand", "Left Behind"]

    def test_case_insensitive_and_limit(self, book_repo, make_book):
        for i in range(3):
            make_book(title=f"Ocean {i}")
        assert len(book_repo.search_books("OCEAN", limit=2)) == 2

    def test_empty_or_symbol_query(self, book_repo, sample_book):
        assert book_repo.search_books("") == []
        assert book_repo.search_books("%%") == []


class TestUpdate:
    def test_update_fields(self, book_repo, sample_book, fixed_clock):
        fixed_clock.advance(hours=1)
        updated = book_repo.update(
            sample_book.id,
            BookUpdateSchema(title="The Dispossessed", genre=["Science Fiction"], tags=["Utopia"]),
        )
        assert updated.title == "The Dispossessed"
        assert updated.genre == [Genre.SCIENCE_FICTION]
        assert updated.tags == ["utopia"]
        assert updated.added_by == sample_book.added_by
        assert updated.updated_at == fixed_clock.now()
        assert updated.version == sample_book.version + 1

    def test_added_by_is_not_updatable(self):
        with pytest.raises(ValidationError):
            BookUpdateSchema(added_by="someone_else")

    def test_total_copies_moves_shelf_count(self, book_repo, circulation_repo, sample_book):
        circulation_repo.borrow_book(sample_book.id, "user_ada")

        updated = book_repo.update(sample_book.id, BookUpdateSchema(total_copies=4))
        assert (updated.total_copies, updated.available_copies) == (4, 3)

    def test_cannot_remove_copies_on_loan(self, book_repo, circulation_repo, sample_book):
        circulation_repo.borrow_book(sample_book.id, "user_ada")
        circulation_repo.borrow_book(sample_book.id, "user_grace")

        with pytest.raises(DomainError, match="copies are on loan"):
            book_repo.update(sample_book.id, BookUpdateSchema(total_copies=1))

    def test_available_cannot_exceed_total(self, book_repo, sample_book):
        with pytest.raises(DomainError, match="Available copies cannot exceed total copies"):
            book_repo.update(sample_book.id, BookUpdateSchema(available_copies=5))

    def test_reaching_zero_copies_marks_borrowed(self, book_repo, sample_book):
        updated = book_repo.update(sample_book.id, BookUpdateSchema(available_copies=0))
        assert updated.availability == Availability.BORROWED

    def test_isbn_change_checks_duplicates(self, book_repo, sample_book, make_book):
        other = make_book(title="Other", isbn="0-306-40615-2")
        with pytest.raises(DuplicateError):
            book_repo.update(other.id, BookUpdateSchema(isbn="978-0-306-40615-7"))

        same = book_repo.update(sample_book.id, BookUpdateSchema(isbn="9780306406157"))
        assert same.isbn == "9780306406157"

    def test_update_missing_book(self, book_repo):
        with pytest.raises(NotFoundError):
            book_repo.update("book_missing", BookUpdateSchema(title="X"))

    @pytest.mark.parametrize("field", ["title", "author", "language"])
    def test_required_fields_cannot_be_cleared(self, field):
        with pytest.raises(ValidationError, match="Field cannot be null"):
            BookUpdateSchema(**{field: None})

    def test_refused_update_leaves_book_untouched(
        self, book_repo, circulation_repo, sample_book, make_book
    ):
        other = make_book(title="Other")
        with pytest.raises(DuplicateError):
            book_repo.update(
                other.id, BookUpdateSchema(total_copies=7, isbn="978-0-306-40615-7")
            )

        # A later commit on the same session must not carry the refused change
        circulation_repo.borrow_book(sample_book.id, "user_ada")

        reloaded = book_repo.get_by_id(other.id)
        assert (reloaded.total_copies, reloaded.available_copies) == (1, 1)
        assert reloaded.isbn is None
        assert reloaded.version == other.version

    def test_racing_isbn_claim_is_duplicate(self, two_sessions):
        first, second = two_sessions
        claimer = BookRepository(first).create(
            BookCreateSchema(title="Claimer", author="A", added_by="user_librarian")
        )
        rival = BookRepository(first).create(
            BookCreateSchema(title="Rival", author="B", added_by="user_librarian")
        )
        held = BookRepository(second).get_for_update(rival.id)

        BookRepository(first).update(claimer.id, BookUpdateSchema(isbn="978-0-306-40615-7"))

        # The rival request checked the ISBN before the claimer committed
        held.isbn = "978-0-306-40615-7"
        held.isbn_key = "9780306406157"
        with pytest.raises(DuplicateError) as exc_info:
            BookRepository(second).save(held, "update book")
        assert exc_info.value.field == "isbn"


class TestAvailability:
    def test_manual_overrides(self, book_repo, sample_book):
        assert book_repo.set_availability(sample_book.id, "maintenance").availability == (
            Availability.MAINTENANCE
        )
        assert book_repo.set_availability(sample_book.id, "available").availability == (
            Availability.AVAILABLE
        )

    def test_borrowed_requires_empty_shelf(self, book_repo, sample_book):
        with pytest.raises(DomainError):
            book_repo.set_availability(sample_book.id, Availability.BORROWED)

    def test_available_requires_copy_on_shelf(self, book_repo, make_book):
        book = make_book(total_copies=1, available_copies=0, availability="borrowed")
        with pytest.raises(DomainError):
            book_repo.set_availability(book.id, Availability.AVAILABLE)


class TestReviews:
    def test_rating_is_running_average(self, book_repo, sample_book):
        book_repo.add_review(sample_book.id, "user_ada", 5, "Wonderful")
        book_repo.add_review(sample_book.id, "user_grace", 4)
        book = book_repo.add_review(sample_book.id, "user_alan", 4)

        assert book.rating.count == 3
        assert book.rating.average == 4.33
        assert [r.user_id for r in book.reviews] == ["user_ada", "user_grace", "user_alan"]

    def test_one_review_per_user(self, book_repo, sample_book):
        book_repo.add_review(sample_book.id, "user_ada", 5)
        with pytest.raises(DomainError, match="already reviewed"):
            book_repo.add_review(sample_book.id, "user_ada", 1)

    def test_invalid_rating(self, book_repo, sample_book):
        with pytest.raises(ValidationError):
            book_repo.add_review(sample_book.id, "user_ada", 6)
