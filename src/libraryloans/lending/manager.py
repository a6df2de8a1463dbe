"""Loan ledger for book loan operations."""

import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..db.models import Book
from ..db.pagination import apply_sort, paginate
from ..db.schemas import Page, PageRequest
from ..db.sqlite import Database, get_db
from ..errors import BookAlreadyLoanedError, InvalidArgumentError, require_id
from .models import Loan
from .overdue import DEFAULT_THRESHOLD_DAYS, OverdueScanner, not_returned
from .schemas import LoanFilter

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "id": Loan.id,
    "customer": Loan.customer,
    "loan_date": Loan.loan_date,
}


def _require_customer(loan: Loan) -> None:
    if loan.customer is None or not loan.customer.strip():
        raise InvalidArgumentError("Customer must be provided")


def _is_unreturned_conflict(error: IntegrityError) -> bool:
    """Check whether a failed write broke the one-unreturned-loan index."""
    message = str(error.orig)
    return (
        "uq_loans_book_unreturned" in message
        or "UNIQUE constraint failed: loans.book_id" in message
    )


class LoanLedger:
    """Manages book loans and keeps each book to one unreturned loan."""

    def __init__(
        self,
        db: Optional[Database] = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        clock: Callable[[], date] = date.today,
    ):
        """Initialize the ledger.

        Args:
            db: Database instance
            threshold_days: Days a loan may stay out before it is late
            clock: Returns the current date for overdue scans
        """
        self.db = db or get_db()
        self.scanner = OverdueScanner(self.db, threshold_days=threshold_days, clock=clock)

    # -------------------------------------------------------------------------
    # Loan lifecycle
    # -------------------------------------------------------------------------

    def save(self, loan: Loan) -> Loan:
        """Record a new loan.

        The loan must reference its book and carry its loan date.

        Args:
            loan: Unsaved loan

        Returns:
            Stored loan with its assigned id

        Raises:
            BookAlreadyLoanedError: If the book has an unreturned loan
            InvalidArgumentError: If the book, customer or loan date is missing
        """
        book_id = loan.book.id if loan.book is not None else loan.book_id
        if not book_id:
            raise InvalidArgumentError("Loan must reference a stored book")
        if loan.loan_date is None:
            raise InvalidArgumentError("Loan date must be provided")
        _require_customer(loan)

        with self.db.get_session() as session:
            if session.get(Book, book_id) is None:
                raise InvalidArgumentError(f"Book {book_id} does not exist")

            if self._has_unreturned_loan(session, book_id):
                logger.warning("Rejected loan: book %s already loaned", book_id)
                raise BookAlreadyLoanedError(book_id)

            record = Loan(
                customer=loan.customer,
                customer_email=loan.customer_email,
                book_id=book_id,
                loan_date=loan.loan_date,
                returned=loan.returned,
            )
            session.add(record)
            try:
                session.flush()
            except IntegrityError as e:
                if not _is_unreturned_conflict(e):
                    raise
                # A concurrent save won the race for this book
                logger.warning("Rejected concurrent loan for book %s", book_id)
                raise BookAlreadyLoanedError(book_id) from e

            loan_id = record.id

        logger.info("Created loan %s of book %s for %s", loan_id, book_id, loan.customer)
        return self.get_by_id(loan_id)

    def get_by_id(self, loan_id: int) -> Optional[Loan]:
        """Get a loan by ID, with its book loaded.

        Returns:
            Loan or None
        """
        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .options(selectinload(Loan.book))
                .where(Loan.id == loan_id)
            )
            loan = session.execute(stmt).scalar_one_or_none()
            if loan:
                session.expunge(loan)
            return loan

    def update(self, loan: Loan) -> Optional[Loan]:
        """Persist a loan's customer details and returned flag.

        The book and loan date never change after creation.

        Returns:
            Updated loan or None if no loan has that id

        Raises:
            InvalidArgumentError: If the loan, its id or its customer is missing
        """
        loan_id = require_id(loan, "Loan")
        _require_customer(loan)

        with self.db.get_session() as session:
            stored = session.get(Loan, loan_id)
            if not stored:
                return None

            book_id = stored.book_id
            stored.customer = loan.customer
            stored.customer_email = loan.customer_email
            stored.returned = loan.returned
            try:
                session.flush()
            except IntegrityError as e:
                if not _is_unreturned_conflict(e):
                    raise
                # Re-opening this loan would give the book a second active loan
                raise BookAlreadyLoanedError(book_id) from e

        logger.info("Updated loan %s (returned=%s)", loan_id, loan.returned)
        return self.get_by_id(loan_id)

    def return_loan(self, loan_id: int) -> Optional[Loan]:
        """Mark a loan as returned.

        Returns:
            Updated loan or None
        """
        loan = self.get_by_id(loan_id)
        if not loan:
            return None
        loan.returned = True
        return self.update(loan)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find(self, filter: LoanFilter, page: PageRequest) -> Page[Loan]:
        """Search loan history by book ISBN or customer.

        A loan matches when its book's ISBN equals ``filter.isbn`` or its
        customer equals ``filter.customer``. An empty field adds nothing,
        and an empty filter matches every loan.

        Args:
            filter: ISBN and/or customer
            page: Page number, size and ordering

        Returns:
            Page of loans with the total number of matches
        """
        stmt = select(Loan).join(Loan.book).options(selectinload(Loan.book))

        conditions = []
        if filter.isbn:
            conditions.append(Book.isbn == filter.isbn)
        if filter.customer:
            conditions.append(Loan.customer == filter.customer)
        if conditions:
            stmt = stmt.where(or_(*conditions))

        stmt = apply_sort(stmt, page.sort, SORTABLE_FIELDS, Loan.id)

        with self.db.get_session() as session:
            return paginate(session, stmt, page)

    def get_loans_by_book(self, book: Book, page: PageRequest) -> Page[Loan]:
        """Get the loan history of one book.

        Returns:
            Page of loans referencing ``book``
        """
        stmt = (
            select(Loan)
            .options(selectinload(Loan.book))
            .where(Loan.book_id == book.id)
        )
        stmt = apply_sort(stmt, page.sort, SORTABLE_FIELDS, Loan.id)

        with self.db.get_session() as session:
            return paginate(session, stmt, page)

    def get_all_late_loans(self, today: Optional[date] = None) -> list[Loan]:
        """Get every unreturned loan past the overdue threshold.

        Args:
            today: Date to scan as of (default: the ledger's clock)
        """
        return self.scanner.scan(today)

    def has_unreturned_loan(self, book: Book) -> bool:
        """Check whether ``book`` is currently out."""
        with self.db.get_session() as session:
            return self._has_unreturned_loan(session, book.id)

    @staticmethod
    def _has_unreturned_loan(session, book_id: int) -> bool:
        stmt = select(Loan.id).where(Loan.book_id == book_id, not_returned()).limit(1)
        return session.execute(stmt).first() is not None
