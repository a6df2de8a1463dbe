"""Tests for LoanLedger."""

import threading
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from libraryloans.catalog import BookCatalog
from libraryloans.db.models import Book
from libraryloans.db.schemas import BookCreate, PageRequest
from libraryloans.db.sqlite import Database
from libraryloans.errors import BookAlreadyLoanedError, InvalidArgumentError
from libraryloans.lending import Loan, LoanFilter, LoanLedger
from libraryloans.lending.manager import _is_unreturned_conflict


def new_loan(book: Book, customer: str = "fulano", **kwargs) -> Loan:
    kwargs.setdefault("loan_date", date(2024, 6, 15))
    return Loan(book=book, customer=customer, **kwargs)


class TestSaveLoan:
    """Tests for recording loans."""

    def test_save_loan(self, ledger: LoanLedger, sample_book: Book):
        """Test a loan is stored with an id and its book."""
        loan = ledger.save(new_loan(sample_book, customer_email="fulano@email.com"))

        assert loan.id is not None
        assert loan.id > 0
        assert loan.customer == "fulano"
        assert loan.customer_email == "fulano@email.com"
        assert loan.loan_date == date(2024, 6, 15)
        assert loan.returned is None
        assert loan.book.id == sample_book.id
        assert loan.book.isbn == "123"

    def test_save_rejects_loaned_book(self, ledger: LoanLedger, sample_book: Book):
        """Test a book with an unreturned loan cannot be lent again."""
        ledger.save(new_loan(sample_book))

        with pytest.raises(BookAlreadyLoanedError) as exc_info:
            ledger.save(new_loan(sample_book, customer="ciclano"))

        assert exc_info.value.message == "Book already loaned"
        assert exc_info.value.book_id == sample_book.id

    def test_rejected_loan_not_persisted(self, ledger: LoanLedger, sample_book: Book):
        ledger.save(new_loan(sample_book))

        with pytest.raises(BookAlreadyLoanedError):
            ledger.save(new_loan(sample_book, customer="ciclano"))

        page = ledger.get_loans_by_book(sample_book, PageRequest())
        assert page.total == 1
        assert page.items[0].customer == "fulano"

    def test_returned_false_still_blocks(self, ledger: LoanLedger, sample_book: Book):
        """Test returned=False counts as not returned."""
        ledger.save(new_loan(sample_book, returned=False))

        with pytest.raises(BookAlreadyLoanedError):
            ledger.save(new_loan(sample_book))

    def test_save_after_return(self, ledger: LoanLedger, sample_book: Book):
        """Test returning a loan frees the book for a new one."""
        loan = ledger.save(new_loan(sample_book))
        loan.returned = True
        ledger.update(loan)

        second = ledger.save(new_loan(sample_book, customer="ciclano"))

        assert second.id != loan.id
        assert second.customer == "ciclano"

    def test_loans_on_different_books(self, ledger: LoanLedger, multiple_books):
        loans = [ledger.save(new_loan(book)) for book in multiple_books]
        assert len({loan.id for loan in loans}) == len(multiple_books)

    def test_save_without_book(self, ledger: LoanLedger):
        with pytest.raises(InvalidArgumentError):
            ledger.save(Loan(customer="fulano", loan_date=date(2024, 6, 15)))

    def test_save_with_unknown_book(self, ledger: LoanLedger):
        ghost = Book(id=999, title="T", author="A", isbn="9")
        with pytest.raises(InvalidArgumentError):
            ledger.save(new_loan(ghost))

    def test_save_without_loan_date(self, ledger: LoanLedger, sample_book: Book):
        """Test the ledger never stamps the date itself."""
        with pytest.raises(InvalidArgumentError):
            ledger.save(Loan(book=sample_book, customer="fulano"))

    @pytest.mark.parametrize("customer", [None, "", "   "])
    def test_save_without_customer(self, ledger: LoanLedger, sample_book: Book, customer):
        """Test a loan needs a customer and a missing one is not a loan conflict."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            ledger.save(new_loan(sample_book, customer=customer))

        assert exc_info.value.message == "Customer must be provided"
        assert not ledger.has_unreturned_loan(sample_book)

    def test_concurrent_saves_single_winner(self, file_db: Database):
        """Test concurrent saves for one book yield exactly one loan."""
        catalog = BookCatalog(file_db)
        ledger = LoanLedger(file_db)
        book = catalog.create(BookCreate(title="Disputed", author="A", isbn="777"))

        attempts = 8
        barrier = threading.Barrier(attempts)
        outcomes = []
        lock = threading.Lock()

        def attempt(n: int) -> None:
            barrier.wait()
            try:
                ledger.save(new_loan(book, customer=f"customer {n}"))
                result = "ok"
            except BookAlreadyLoanedError:
                result = "rejected"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(n,)) for n in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert outcomes.count("ok") == 1
        assert outcomes.count("rejected") == attempts - 1
        assert ledger.get_loans_by_book(book, PageRequest()).total == 1


class TestGetAndUpdate:
    """Tests for loan lookups and updates."""

    def test_get_by_id(self, ledger: LoanLedger, sample_book: Book):
        loan = ledger.save(new_loan(sample_book))

        found = ledger.get_by_id(loan.id)

        assert found is not None
        assert found.customer == "fulano"
        assert found.book.title == "As aventuras"

    def test_get_by_id_not_found(self, ledger: LoanLedger):
        assert ledger.get_by_id(999) is None

    def test_update_returned(self, ledger: LoanLedger, sample_book: Book):
        """Test flipping returned to true is persisted."""
        loan = ledger.save(new_loan(sample_book))
        loan.returned = True

        updated = ledger.update(loan)

        assert updated.returned is True
        assert ledger.get_by_id(loan.id).returned is True

    def test_update_keeps_book_and_date(self, ledger: LoanLedger, sample_book: Book, multiple_books):
        loan = ledger.save(new_loan(sample_book))
        loan.loan_date = date(2000, 1, 1)
        loan.book_id = multiple_books[0].id

        updated = ledger.update(loan)

        assert updated.loan_date == date(2024, 6, 15)
        assert updated.book.id == sample_book.id

    def test_update_missing_id(self, ledger: LoanLedger):
        with pytest.raises(InvalidArgumentError):
            ledger.update(Loan(customer="fulano"))

    def test_update_none(self, ledger: LoanLedger):
        with pytest.raises(InvalidArgumentError):
            ledger.update(None)

    @pytest.mark.parametrize("loan_id", [True, 0, -3, "1"])
    def test_update_invalid_id(self, ledger: LoanLedger, sample_book: Book, loan_id):
        loan = ledger.save(new_loan(sample_book))

        with pytest.raises(InvalidArgumentError) as exc_info:
            ledger.update(Loan(id=loan_id, customer="fulano", returned=True))

        assert exc_info.value.message == "Loan id must be provided"
        assert ledger.get_by_id(loan.id).returned is None

    def test_update_without_customer(self, ledger: LoanLedger, sample_book: Book):
        """Test clearing the customer is rejected before it reaches the store."""
        loan = ledger.save(new_loan(sample_book))

        with pytest.raises(InvalidArgumentError):
            ledger.update(Loan(id=loan.id, returned=True))

        stored = ledger.get_by_id(loan.id)
        assert stored.customer == "fulano"
        assert stored.returned is None

    def test_update_unknown_loan(self, ledger: LoanLedger):
        assert ledger.update(Loan(id=999, customer="fulano", returned=True)) is None

    def test_reopening_loan_blocked_by_store(self, ledger: LoanLedger, sample_book: Book):
        """Test the store refuses to give a book two unreturned loans."""
        first = ledger.save(new_loan(sample_book))
        first.returned = True
        ledger.update(first)
        ledger.save(new_loan(sample_book, customer="ciclano"))

        first.returned = False
        with pytest.raises(BookAlreadyLoanedError):
            ledger.update(first)

        assert ledger.get_by_id(first.id).returned is True

    def test_return_loan(self, ledger: LoanLedger, sample_book: Book):
        loan = ledger.save(new_loan(sample_book))

        returned = ledger.return_loan(loan.id)

        assert returned.returned is True
        assert not ledger.has_unreturned_loan(sample_book)

    def test_return_unknown_loan(self, ledger: LoanLedger):
        assert ledger.return_loan(999) is None

    def test_has_unreturned_loan(self, ledger: LoanLedger, sample_book: Book):
        assert not ledger.has_unreturned_loan(sample_book)
        ledger.save(new_loan(sample_book))
        assert ledger.has_unreturned_loan(sample_book)


class TestFindLoans:
    """Tests for loan history searches."""

    @pytest.fixture
    def history(self, catalog: BookCatalog, ledger: LoanLedger):
        """Loans that match on isbn only, customer only, both, and neither."""
        isbn_book = catalog.create(BookCreate(title="Isbn match", author="A", isbn="321"))
        other_book = catalog.create(BookCreate(title="Other", author="A", isbn="999"))
        third_book = catalog.create(BookCreate(title="Third", author="A", isbn="888"))

        isbn_only = ledger.save(new_loan(isbn_book, customer="Beltrano", returned=True))
        both = ledger.save(new_loan(isbn_book, customer="Fulano"))
        customer_only = ledger.save(new_loan(other_book, customer="Fulano"))
        neither = ledger.save(new_loan(third_book, customer="Ciclano"))
        return {
            "isbn_only": isbn_only,
            "both": both,
            "customer_only": customer_only,
            "neither": neither,
        }

    def test_find_isbn_or_customer(self, ledger: LoanLedger, history):
        """Test a loan matches on isbn or on customer."""
        page = ledger.find(LoanFilter(isbn="321", customer="Fulano"), PageRequest(page=0, size=10))

        ids = {loan.id for loan in page.items}
        assert history["isbn_only"].id in ids
        assert history["both"].id in ids
        assert history["customer_only"].id in ids
        assert history["neither"].id not in ids
        assert page.total == 3
        assert page.page == 0
        assert page.size == 10

    def test_find_single_loan_by_isbn_leg(self, ledger: LoanLedger, sample_book: Book):
        """Test a loan matching only the isbn is included."""
        loan = ledger.save(new_loan(sample_book, customer="Outro"))

        page = ledger.find(LoanFilter(isbn="123", customer="Fulano"), PageRequest(size=10))

        assert [l.id for l in page.items] == [loan.id]
        assert page.total == 1

    def test_find_by_isbn_only(self, ledger: LoanLedger, history):
        page = ledger.find(LoanFilter(isbn="321"), PageRequest())

        assert {l.id for l in page.items} == {history["isbn_only"].id, history["both"].id}

    def test_find_by_customer_only(self, ledger: LoanLedger, history):
        page = ledger.find(LoanFilter(customer="Fulano"), PageRequest())

        assert {l.id for l in page.items} == {history["both"].id, history["customer_only"].id}

    def test_find_customer_is_exact(self, ledger: LoanLedger, history):
        assert ledger.find(LoanFilter(customer="fulano"), PageRequest()).total == 0

    def test_find_empty_filter_matches_all(self, ledger: LoanLedger, history):
        """Test an empty filter places no constraint on the loans."""
        page = ledger.find(LoanFilter(), PageRequest())
        assert page.total == 4

        page = ledger.find(LoanFilter(isbn="", customer=""), PageRequest())
        assert page.total == 4

    def test_find_no_matches(self, ledger: LoanLedger, history):
        page = ledger.find(LoanFilter(isbn="000", customer="Ninguem"), PageRequest())
        assert page.total == 0
        assert page.items == []

    def test_find_paginates(self, ledger: LoanLedger, history):
        """Test the total covers every match while the page is cut."""
        page = ledger.find(LoanFilter(isbn="321", customer="Fulano"), PageRequest(page=1, size=2))

        assert page.total == 3
        assert len(page.items) == 1
        assert page.total_pages == 2

    def test_find_loans_have_books(self, ledger: LoanLedger, history):
        page = ledger.find(LoanFilter(isbn="321"), PageRequest())
        assert all(loan.book.isbn == "321" for loan in page.items)

    def test_find_sorted_by_customer(self, ledger: LoanLedger, history):
        page = ledger.find(LoanFilter(), PageRequest(sort=["customer"]))
        customers = [l.customer for l in page.items]
        assert customers == sorted(customers)


class TestLoansByBook:
    """Tests for a book's loan history."""

    def test_get_loans_by_book(self, ledger: LoanLedger, sample_book: Book, multiple_books):
        for n in range(3):
            loan = ledger.save(new_loan(sample_book, customer=f"customer {n}"))
            ledger.return_loan(loan.id)
        ledger.save(new_loan(multiple_books[0]))

        page = ledger.get_loans_by_book(sample_book, PageRequest(page=0, size=2))

        assert page.total == 3
        assert len(page.items) == 2
        assert all(loan.book.id == sample_book.id for loan in page.items)

    def test_get_loans_by_book_empty(self, ledger: LoanLedger, sample_book: Book):
        page = ledger.get_loans_by_book(sample_book, PageRequest())
        assert page.total == 0
        assert page.items == []


class TestLateLoans:
    """Tests for the ledger's overdue query."""

    def test_get_all_late_loans(self, ledger: LoanLedger, make_loan, today: date):
        late = make_loan(days_ago=5)
        make_loan(days_ago=4)

        loans = ledger.get_all_late_loans()

        assert [loan.id for loan in loans] == [late.id]
        assert loans[0].loan_date == today - timedelta(days=5)
        assert loans[0].book is not None


class TestIntegrityErrors:
    """Tests for telling loan conflicts apart from other store errors."""

    @pytest.mark.parametrize("message", [
        "UNIQUE constraint failed: loans.book_id",
        'duplicate key value violates unique constraint "uq_loans_book_unreturned"',
    ])
    def test_unreturned_conflict(self, message):
        error = IntegrityError("INSERT INTO loans", {}, Exception(message))
        assert _is_unreturned_conflict(error)

    @pytest.mark.parametrize("message", [
        "NOT NULL constraint failed: loans.customer",
        "NOT NULL constraint failed: loans.book_id",
        "FOREIGN KEY constraint failed",
    ])
    def test_other_integrity_errors(self, message):
        error = IntegrityError("INSERT INTO loans", {}, Exception(message))
        assert not _is_unreturned_conflict(error)
