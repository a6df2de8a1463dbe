"""SQLAlchemy models for book lending.

Tables:
- loans: Individual loan records
"""

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, Book, utc_now


class Loan(Base):
    """Loan model - one customer borrowing one book."""

    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    customer: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(200))

    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    loan_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # None and False both mean the book is still out
    returned: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now)
    updated_at: Mapped[str] = mapped_column(String(32), default=utc_now, onupdate=utc_now)

    # Relationships
    book: Mapped["Book"] = relationship("Book")

    __table_args__ = (
        # At most one unreturned loan per book
        Index(
            "uq_loans_book_unreturned",
            "book_id",
            unique=True,
            sqlite_where=text("coalesce(returned, 0) = 0"),
            postgresql_where=text("coalesce(returned, false) = false"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, book_id={self.book_id}, customer='{self.customer}', returned={self.returned})>"

    @property
    def is_returned(self) -> bool:
        """Check if the book has been given back."""
        return self.returned is True
