"""Overdue loan detection.

A loan is late when it is not returned and its loan date falls strictly
before ``today - threshold_days``. A loan dated exactly on that cutoff is
still on time.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Optional

from sqlalchemy import false, or_, select
from sqlalchemy.orm import selectinload

from ..db.sqlite import Database, get_db
from .models import Loan

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 4


def late_cutoff(today: date, threshold_days: int) -> date:
    """First loan date that is not late as of ``today``."""
    return today - timedelta(days=threshold_days)


def is_late(loan: Loan, today: date, threshold_days: int = DEFAULT_THRESHOLD_DAYS) -> bool:
    """Check a single loan against the overdue rule."""
    if loan.returned is True:
        return False
    return loan.loan_date < late_cutoff(today, threshold_days)


def not_returned():
    """SQL condition for loans that are still out."""
    return or_(Loan.returned.is_(None), Loan.returned == false())


class OverdueScanner:
    """Finds every unreturned loan older than the threshold."""

    def __init__(
        self,
        db: Optional[Database] = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        clock: Callable[[], date] = date.today,
    ):
        """Initialize the scanner.

        Args:
            db: Database instance
            threshold_days: Days a loan may stay out before it is late
            clock: Returns the current date, once per scan
        """
        if threshold_days < 0:
            raise ValueError("threshold_days must not be negative")
        self.db = db or get_db()
        self.threshold_days = threshold_days
        self.clock = clock

    def scan(self, today: Optional[date] = None) -> list[Loan]:
        """Return all late loans as of ``today`` (default: the clock).

        Returns:
            Late loans with their books loaded, oldest first
        """
        if today is None:
            today = self.clock()
        cutoff = late_cutoff(today, self.threshold_days)

        with self.db.get_session() as session:
            stmt = (
                select(Loan)
                .options(selectinload(Loan.book))
                .where(Loan.loan_date < cutoff, not_returned())
                .order_by(Loan.loan_date, Loan.id)
            )
            loans = list(session.execute(stmt).scalars().all())
            for loan in loans:
                session.expunge(loan)

        logger.info("Found %d late loans before %s", len(loans), cutoff.isoformat())
        return loans
