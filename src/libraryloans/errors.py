"""Domain errors raised by the catalog, the ledger and the notifiers."""


class LibraryError(Exception):
    """Base class for all libraryloans errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BusinessError(LibraryError):
    """A domain rule was violated by client input."""


class DuplicateIsbnError(BusinessError):
    """A book with the same ISBN is already in the catalog."""

    def __init__(self, isbn: str):
        super().__init__("Isbn already registered")
        self.isbn = isbn


class BookAlreadyLoanedError(BusinessError):
    """The book already has an unreturned loan."""

    def __init__(self, book_id: int):
        super().__init__("Book already loaned")
        self.book_id = book_id


class InvalidArgumentError(LibraryError, ValueError):
    """An operation was called without a usable identifier."""


class NotificationError(LibraryError):
    """Delivering a notification batch failed."""


def require_id(entity, name: str) -> int:
    """Return ``entity.id`` or fail if it is missing or not a positive int."""
    entity_id = getattr(entity, "id", None)
    if (
        entity is None
        or not isinstance(entity_id, int)
        or isinstance(entity_id, bool)
        or entity_id <= 0
    ):
        raise InvalidArgumentError(f"{name} id must be provided")
    return entity_id
