"""JSON web API for the catalog and the loan ledger, built with Flask."""

import logging
from datetime import date
from typing import Callable, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError

from .catalog import BookCatalog
from .config import Config, get_config
from .db import BookCreate, BookFilter, BookResponse, BookUpdate, Page, PageRequest
from .db.sqlite import Database, get_db
from .errors import BusinessError, InvalidArgumentError
from .lending import LoanCreate, LoanFilter, LoanLedger, LoanResponse, ReturnedLoan
from .lending.models import Loan

logger = logging.getLogger(__name__)


def _errors(messages: list[str], status: int):
    return jsonify({"errors": messages}), status


def _page_request() -> PageRequest:
    """Build a page request from the query string."""
    return PageRequest(
        page=request.args.get("page", 0),
        size=request.args.get("size", 20),
        sort=request.args.get("sort"),
    )


def _page_json(page: Page):
    return {
        "content": [item.model_dump(mode="json") for item in page.items],
        "total_elements": page.total,
        "page": page.page,
        "size": page.size,
        "total_pages": page.total_pages,
    }


def _book_json(book) -> dict:
    return BookResponse.model_validate(book).model_dump(mode="json")


def _loan_json(loan) -> dict:
    return LoanResponse.model_validate(loan).model_dump(mode="json")


def create_app(
    db: Optional[Database] = None,
    config: Optional[Config] = None,
    clock: Callable[[], date] = date.today,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        db: Database instance (default: the global database)
        config: Configuration (default: loaded from the environment)
        clock: Returns the date stamped on new loans and used for scans
    """
    config = config or get_config()
    db = db or get_db(str(config.db_path))

    catalog = BookCatalog(db)
    ledger = LoanLedger(db, threshold_days=config.loan_threshold_days, clock=clock)

    app = Flask(__name__)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    @app.errorhandler(BusinessError)
    def handle_business_error(e: BusinessError):
        return _errors([e.message], 400)

    @app.errorhandler(InvalidArgumentError)
    def handle_invalid_argument(e: InvalidArgumentError):
        return _errors([e.message], 400)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        messages = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
            for err in e.errors()
        ]
        return _errors(messages, 400)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    @app.route("/api/books", methods=["POST"])
    def create_book():
        """Register a book."""
        data = BookCreate.model_validate(request.get_json(silent=True) or {})
        logger.info("Creating book for isbn %s", data.isbn)
        book = catalog.create(data)
        return jsonify(_book_json(book)), 201

    @app.route("/api/books/<int:book_id>", methods=["GET"])
    def get_book(book_id: int):
        book = catalog.get_by_id(book_id)
        if not book:
            return _errors(["Book not found"], 404)
        return jsonify(_book_json(book))

    @app.route("/api/books/<int:book_id>", methods=["PUT"])
    def update_book(book_id: int):
        """Update a book's title and author."""
        data = BookUpdate.model_validate(request.get_json(silent=True) or {})
        book = catalog.get_by_id(book_id)
        if not book:
            return _errors(["Book not found"], 404)

        if data.title is not None:
            book.title = data.title
        if data.author is not None:
            book.author = data.author

        book = catalog.update(book)
        if not book:
            return _errors(["Book not found"], 404)
        return jsonify(_book_json(book))

    @app.route("/api/books/<int:book_id>", methods=["DELETE"])
    def delete_book(book_id: int):
        book = catalog.get_by_id(book_id)
        if not book:
            return _errors(["Book not found"], 404)
        catalog.delete(book)
        return "", 204

    @app.route("/api/books", methods=["GET"])
    def find_books():
        """Search the catalog."""
        filter = BookFilter(
            title=request.args.get("title"),
            author=request.args.get("author"),
            isbn=request.args.get("isbn"),
        )
        page = catalog.find(filter, _page_request())
        return jsonify(_page_json(page.map(BookResponse.model_validate)))

    @app.route("/api/books/<int:book_id>/loans", methods=["GET"])
    def book_loans(book_id: int):
        """Loan history of one book."""
        book = catalog.get_by_id(book_id)
        if not book:
            return _errors(["Book not found"], 404)
        page = ledger.get_loans_by_book(book, _page_request())
        return jsonify(_page_json(page.map(LoanResponse.model_validate)))

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    @app.route("/api/loans", methods=["POST"])
    def create_loan():
        """Lend the book with the given ISBN."""
        data = LoanCreate.model_validate(request.get_json(silent=True) or {})
        book = catalog.get_by_isbn(data.isbn)
        if not book:
            return _errors(["Book not found for passed isbn"], 400)

        loan = ledger.save(Loan(
            book=book,
            customer=data.customer,
            customer_email=data.email,
            loan_date=clock(),
        ))
        return jsonify({"id": loan.id}), 201

    @app.route("/api/loans/<int:loan_id>", methods=["PATCH"])
    def return_book(loan_id: int):
        """Record whether a loan was returned."""
        data = ReturnedLoan.model_validate(request.get_json(silent=True) or {})
        loan = ledger.get_by_id(loan_id)
        if not loan:
            return _errors(["Loan not found"], 404)

        loan.returned = data.returned
        loan = ledger.update(loan)
        return jsonify(_loan_json(loan))

    @app.route("/api/loans", methods=["GET"])
    def find_loans():
        """Search loans by ISBN or customer."""
        filter = LoanFilter(
            isbn=request.args.get("isbn"),
            customer=request.args.get("customer"),
        )
        page = ledger.find(filter, _page_request())
        return jsonify(_page_json(page.map(LoanResponse.model_validate)))

    @app.route("/api/loans/late", methods=["GET"])
    def late_loans():
        loans = ledger.get_all_late_loans()
        return jsonify([_loan_json(loan) for loan in loans])

    return app


def run_server(host: str = "127.0.0.1", port: int = 5000, debug: bool = False):
    """Run the API web server."""
    app = create_app()
    app.run(host=host, port=port, debug=debug)
