"""Catalog manager for book records."""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..db.models import Book
from ..db.pagination import apply_sort, paginate
from ..db.schemas import BookCreate, BookFilter, Page, PageRequest
from ..db.sqlite import Database, get_db
from ..errors import DuplicateIsbnError, require_id

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "id": Book.id,
    "title": Book.title,
    "author": Book.author,
    "isbn": Book.isbn,
}


class BookCatalog:
    """Manages the book catalog."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize the catalog.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    def create(self, data: BookCreate) -> Book:
        """Register a new book.

        Args:
            data: Book creation data

        Returns:
            Stored book with its assigned id

        Raises:
            DuplicateIsbnError: If the ISBN is already registered
        """
        with self.db.get_session() as session:
            exists = session.execute(
                select(Book.id).where(Book.isbn == data.isbn)
            ).first()
            if exists:
                logger.warning("Rejected book with duplicate isbn %s", data.isbn)
                raise DuplicateIsbnError(data.isbn)

            book = Book(title=data.title, author=data.author, isbn=data.isbn)
            session.add(book)
            try:
                session.flush()
            except IntegrityError as e:
                # Another writer registered the same ISBN after our check
                raise DuplicateIsbnError(data.isbn) from e

            session.expunge(book)
            logger.info("Created book %s for isbn %s", book.id, book.isbn)
            return book

    def get_by_id(self, book_id: int) -> Optional[Book]:
        """Get a book by ID.

        Returns:
            Book or None
        """
        with self.db.get_session() as session:
            book = session.get(Book, book_id)
            if book:
                session.expunge(book)
            return book

    def get_by_isbn(self, isbn: str) -> Optional[Book]:
        """Get a book by ISBN.

        Returns:
            Book or None
        """
        with self.db.get_session() as session:
            book = session.execute(
                select(Book).where(Book.isbn == isbn)
            ).scalar_one_or_none()
            if book:
                session.expunge(book)
            return book

    def update(self, book: Book) -> Optional[Book]:
        """Persist a book's title and author.

        Args:
            book: Book carrying its id and the new field values

        Returns:
            Updated book, or None if no book has that id

        Raises:
            InvalidArgumentError: If the book or its id is missing
        """
        book_id = require_id(book, "Book")

        with self.db.get_session() as session:
            stored = session.get(Book, book_id)
            if not stored:
                return None

            stored.title = book.title
            stored.author = book.author
            session.flush()
            session.expunge(stored)

            logger.info("Updated book %s", book_id)
            return stored

    def delete(self, book: Book) -> bool:
        """Remove a book and, through the foreign key, its loans.

        Returns:
            True if deleted, False if no book has that id

        Raises:
            InvalidArgumentError: If the book or its id is missing
        """
        book_id = require_id(book, "Book")

        with self.db.get_session() as session:
            stored = session.get(Book, book_id)
            if not stored:
                return False

            session.delete(stored)
            logger.info("Deleted book %s", book_id)
            return True

    def find(self, filter: BookFilter, page: PageRequest) -> Page[Book]:
        """Search books by attribute.

        Each non-empty filter field must be contained, ignoring case, in
        the matching column. Empty fields are left out of the match.

        Args:
            filter: Field values to match
            page: Page number, size and ordering

        Returns:
            Page of books with the total number of matches
        """
        stmt = select(Book)

        for field in ("title", "author", "isbn"):
            value = getattr(filter, field)
            if value:
                column = SORTABLE_FIELDS[field]
                stmt = stmt.where(
                    func.lower(column).contains(value.lower(), autoescape=True)
                )

        stmt = apply_sort(stmt, page.sort, SORTABLE_FIELDS, Book.id)

        with self.db.get_session() as session:
            return paginate(session, stmt, page)
