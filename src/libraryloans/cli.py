"""Command-line interface for libraryloans.

Built with Typer for commands and Rich for output.
"""

import logging
from datetime import date
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import get_config
from .db import BookCreate, BookFilter, PageRequest, get_db
from .errors import LibraryError

# Create the main app
app = typer.Typer(
    name="libraryloans",
    help="Manage a lending library's books and loans.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
books_app = typer.Typer(help="Manage the book catalog.", no_args_is_help=True)
app.add_typer(books_app, name="books")

loans_app = typer.Typer(help="Lend books and browse loan history.", no_args_is_help=True)
app.add_typer(loans_app, name="loans")

notify_app = typer.Typer(help="Late loan notifications.", no_args_is_help=True)
app.add_typer(notify_app, name="notify")

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    print_error(message)
    raise typer.Exit(1)


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
    )


def _catalog():
    from .catalog import BookCatalog

    config = get_config()
    return BookCatalog(get_db(str(config.db_path)))


def _ledger(today: Optional[date] = None):
    from .lending import LoanLedger

    config = get_config()
    clock = (lambda: today) if today else date.today
    return LoanLedger(
        get_db(str(config.db_path)),
        threshold_days=config.loan_threshold_days,
        clock=clock,
    )


def _page_footer(page) -> None:
    if page.total_pages > 1:
        print_info(f"Page {page.page + 1} of {page.total_pages} ({page.total} total)")


def format_book_table(books: list, title: str = "Books") -> Table:
    """Create a rich table for displaying books."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Title", style="cyan", no_wrap=False, max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("ISBN")

    for book in books:
        table.add_row(str(book.id), book.title, book.author, book.isbn)

    return table


def format_loan_table(loans: list, title: str = "Loans", today: Optional[date] = None) -> Table:
    """Create a rich table for displaying loans."""
    from .lending import is_late

    config = get_config()
    today = today or date.today()

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Book", style="cyan", max_width=30)
    table.add_column("ISBN")
    table.add_column("Customer")
    table.add_column("Date")
    table.add_column("Status")

    for loan in loans:
        if loan.returned:
            status_str = "[dim]returned[/dim]"
        elif is_late(loan, today, config.loan_threshold_days):
            status_str = "[bold red]LATE[/bold red]"
        else:
            status_str = "[green]out[/green]"

        table.add_row(
            str(loan.id),
            loan.book.title,
            loan.book.isbn,
            loan.customer,
            loan.loan_date.isoformat(),
            status_str,
        )

    return table


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Manage a lending library's books and loans."""
    config = get_config()
    level = logging.DEBUG if verbose else config.log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ============================================================================
# Book Commands
# ============================================================================


@books_app.command("add")
def books_add(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author name"),
    isbn: str = typer.Option(..., "--isbn", "-i", help="ISBN"),
) -> None:
    """Add a book to the catalog."""
    try:
        book = _catalog().create(BookCreate(title=title, author=author, isbn=isbn))
    except ValidationError as e:
        fail(_validation_message(e))
    except LibraryError as e:
        fail(e.message)

    print_success(f"Added: {book.title} (id {book.id})")


@books_app.command("show")
def books_show(
    book_id: int = typer.Argument(..., help="Book ID"),
) -> None:
    """Show a single book."""
    book = _catalog().get_by_id(book_id)
    if not book:
        fail(f"Book not found: {book_id}")

    console.print(format_book_table([book], title=book.title))


@books_app.command("update")
def books_update(
    book_id: int = typer.Argument(..., help="Book ID"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="New author"),
) -> None:
    """Change a book's title or author."""
    catalog = _catalog()
    book = catalog.get_by_id(book_id)
    if not book:
        fail(f"Book not found: {book_id}")

    if title:
        book.title = title
    if author:
        book.author = author

    try:
        book = catalog.update(book)
    except LibraryError as e:
        fail(e.message)

    print_success(f"Updated: {book.title}")


@books_app.command("delete")
def books_delete(
    book_id: int = typer.Argument(..., help="Book ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a book and its loan history."""
    catalog = _catalog()
    book = catalog.get_by_id(book_id)
    if not book:
        fail(f"Book not found: {book_id}")

    if not yes and not typer.confirm(f"Delete '{book.title}'?"):
        print_info("Cancelled")
        return

    catalog.delete(book)
    print_success(f"Deleted: {book.title}")


@books_app.command("list")
def books_list(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title contains"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author contains"),
    isbn: Optional[str] = typer.Option(None, "--isbn", "-i", help="ISBN contains"),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page number"),
    size: int = typer.Option(20, "--size", "-n", min=1, help="Books per page"),
    sort: Optional[str] = typer.Option(None, "--sort", "-s", help="Sort fields, e.g. title,-author"),
) -> None:
    """List and search books."""
    try:
        result = _catalog().find(
            BookFilter(title=title, author=author, isbn=isbn),
            PageRequest(page=page - 1, size=size, sort=sort),
        )
    except LibraryError as e:
        fail(e.message)

    if not result.items:
        console.print("[dim]No books found[/dim]")
        return

    console.print(format_book_table(result.items))
    _page_footer(result)


# ============================================================================
# Loan Commands
# ============================================================================


@loans_app.command("create")
def loans_create(
    isbn: str = typer.Argument(..., help="ISBN of the book to lend"),
    customer: str = typer.Argument(..., help="Customer name"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Customer email"),
) -> None:
    """Lend a book to a customer."""
    from .lending import Loan, LoanCreate

    try:
        data = LoanCreate(isbn=isbn, customer=customer, email=email)
    except ValidationError as e:
        fail(_validation_message(e))

    book = _catalog().get_by_isbn(data.isbn)
    if not book:
        fail("Book not found for passed isbn")

    try:
        loan = _ledger().save(Loan(
            book=book,
            customer=data.customer,
            customer_email=data.email,
            loan_date=date.today(),
        ))
    except LibraryError as e:
        fail(e.message)

    print_success(f"Lent '{book.title}' to {loan.customer} (loan {loan.id})")


@loans_app.command("return")
def loans_return(
    loan_id: int = typer.Argument(..., help="Loan ID"),
) -> None:
    """Mark a loan as returned."""
    try:
        loan = _ledger().return_loan(loan_id)
    except LibraryError as e:
        fail(e.message)

    if not loan:
        fail(f"Loan not found: {loan_id}")

    print_success(f"'{loan.book.title}' returned by {loan.customer}")


@loans_app.command("list")
def loans_list(
    isbn: Optional[str] = typer.Option(None, "--isbn", "-i", help="Book ISBN"),
    customer: Optional[str] = typer.Option(None, "--customer", "-c", help="Customer name"),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page number"),
    size: int = typer.Option(20, "--size", "-n", min=1, help="Loans per page"),
) -> None:
    """List loans for an ISBN or a customer (either one matches)."""
    from .lending import LoanFilter

    result = _ledger().find(
        LoanFilter(isbn=isbn, customer=customer),
        PageRequest(page=page - 1, size=size),
    )

    if not result.items:
        console.print("[dim]No loans found[/dim]")
        return

    console.print(format_loan_table(result.items))
    _page_footer(result)


@loans_app.command("history")
def loans_history(
    book_id: int = typer.Argument(..., help="Book ID"),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page number"),
    size: int = typer.Option(20, "--size", "-n", min=1, help="Loans per page"),
) -> None:
    """Show the loan history of a book."""
    book = _catalog().get_by_id(book_id)
    if not book:
        fail(f"Book not found: {book_id}")

    result = _ledger().get_loans_by_book(book, PageRequest(page=page - 1, size=size))

    if not result.items:
        console.print(f"[dim]No loans for {book.title}[/dim]")
        return

    console.print(format_loan_table(result.items, title=f"Loans of {book.title}"))
    _page_footer(result)


@loans_app.command("late")
def loans_late() -> None:
    """Show loans past the overdue threshold."""
    loans = _ledger().get_all_late_loans()

    if not loans:
        print_success("No late loans!")
        return

    console.print(format_loan_table(loans, title=f"Late Loans: {len(loans)}"))


# ============================================================================
# Notification Commands
# ============================================================================


@notify_app.command("run")
def notify_run(
    dry_run: bool = typer.Option(False, "--dry-run", help="Print instead of sending"),
    on: Optional[str] = typer.Option(None, "--date", "-d", help="Scan as of date (YYYY-MM-DD)"),
) -> None:
    """Email every customer with a late loan, once."""
    from .notifications import ConsoleNotifier, OverdueNotificationJob, build_notifier

    config = get_config()
    try:
        today = date.fromisoformat(on) if on else None
    except ValueError:
        fail(f"Invalid date: {on}")

    try:
        notifier = ConsoleNotifier(console) if dry_run else build_notifier(config)
        job = OverdueNotificationJob.from_config(config, _ledger(today), notifier)
        recipients = job.run(today)
    except LibraryError as e:
        fail(e.message)

    if not recipients:
        print_success("No late loans to notify")
        return

    print_success(f"Notified {len(recipients)} customers")


@notify_app.command("schedule")
def notify_schedule(
    at: Optional[str] = typer.Option(None, "--at", help="Time of day (HH:MM), overrides config"),
    poll: float = typer.Option(30.0, "--poll", help="Seconds between schedule checks"),
) -> None:
    """Send late loan notifications every day until interrupted."""
    from .notifications import DailyTrigger, OverdueNotificationJob, build_notifier

    config = get_config()
    errors = config.validate()
    if errors:
        fail("; ".join(errors))

    job = OverdueNotificationJob.from_config(config, _ledger(), build_notifier(config))
    trigger = DailyTrigger(job, at=at or config.notify_at)

    console.print(f"Late loan notifications daily at [bold]{trigger.at}[/bold]. Ctrl+C to stop.")
    try:
        trigger.run_forever(poll_interval=poll)
    except KeyboardInterrupt:
        print_info("Stopped")


# ============================================================================
# Server and Info
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(5000, "--port", help="Port"),
    debug: bool = typer.Option(False, "--debug", help="Flask debug mode"),
) -> None:
    """Run the JSON API."""
    from .api import run_server

    console.print(f"Library API running at http://{host}:{port}")
    run_server(host=host, port=port, debug=debug)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"libraryloans version {__version__}")


if __name__ == "__main__":
    app()
