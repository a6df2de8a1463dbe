"""Pytest configuration and shared fixtures.

This module provides fixtures for testing libraryloans, including
in-memory databases, managers wired to a fixed date, and sample data.
"""

import tempfile
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from libraryloans.catalog import BookCatalog
from libraryloans.config import Config, reset_config
from libraryloans.db.models import Book
from libraryloans.db.schemas import BookCreate
from libraryloans.db.sqlite import Database, reset_db
from libraryloans.lending import Loan, LoanLedger


FIXED_TODAY = date(2024, 6, 15)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def file_db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed database, needed when threads share it."""
    database = Database(str(temp_db_path))
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    """Reset the global config and database around every test."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()


@pytest.fixture
def config() -> Config:
    """Configuration with the reference four day threshold."""
    return Config(
        db_path=Path(":memory:"),
        loan_threshold_days=4,
        late_loans_subject="Late book loan",
        late_loans_message="Please return the book.",
        notify_at="13:00",
        mail_sender="library@example.com",
        smtp_host=None,
        smtp_port=587,
        smtp_user=None,
        smtp_password=None,
        smtp_starttls=True,
        log_level="INFO",
    )


# ============================================================================
# Manager Fixtures
# ============================================================================


@pytest.fixture
def today() -> date:
    """The date every clock in the tests returns."""
    return FIXED_TODAY


@pytest.fixture
def catalog(db: Database) -> BookCatalog:
    """Create a BookCatalog with test database."""
    return BookCatalog(db)


@pytest.fixture
def ledger(db: Database, today: date) -> LoanLedger:
    """Create a LoanLedger whose clock is fixed at ``today``."""
    return LoanLedger(db, threshold_days=4, clock=lambda: today)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_book(catalog: BookCatalog) -> Book:
    """Create a sample book with isbn 123."""
    return catalog.create(BookCreate(title="As aventuras", author="Arthur", isbn="123"))


@pytest.fixture
def multiple_books(catalog: BookCatalog) -> list[Book]:
    """Create several books in the catalog."""
    books_data = [
        BookCreate(title="Dom Casmurro", author="Machado de Assis", isbn="111"),
        BookCreate(title="Memorias Postumas", author="Machado de Assis", isbn="222"),
        BookCreate(title="O Cortico", author="Aluisio Azevedo", isbn="333"),
        BookCreate(title="Iracema", author="Jose de Alencar", isbn="444"),
        BookCreate(title="O Guarani", author="Jose de Alencar", isbn="555"),
    ]
    return [catalog.create(data) for data in books_data]


@pytest.fixture
def make_loan(catalog: BookCatalog, ledger: LoanLedger, today: date) -> Callable[..., Loan]:
    """Factory that lends a fresh book, dated ``days_ago`` before today."""
    counter = {"n": 0}

    def _make(
        days_ago: int = 0,
        returned: Optional[bool] = None,
        customer: str = "Fulano",
        email: Optional[str] = None,
        book: Optional[Book] = None,
    ) -> Loan:
        if book is None:
            counter["n"] += 1
            book = catalog.create(BookCreate(
                title=f"Book {counter['n']}",
                author="Author",
                isbn=f"9{counter['n']:04d}",
            ))
        return ledger.save(Loan(
            book=book,
            customer=customer,
            customer_email=email,
            loan_date=today - timedelta(days=days_ago),
            returned=returned,
        ))

    return _make
