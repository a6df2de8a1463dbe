"""Daily late loan notifications.

``OverdueNotificationJob`` does one scan-and-notify pass. ``DailyTrigger``
fires it once a day at a fixed wall-clock time and never lets two passes
overlap. Tests drive the trigger by calling ``fire()`` with a fixed date.

A pass with no late loans that carry an email address does not call
the notifier; every other pass calls it exactly once with the whole batch.
"""

import logging
import threading
from datetime import date
from typing import Optional, Protocol

import schedule

from ..config import Config
from .notifier import Notifier

logger = logging.getLogger(__name__)


class LateLoanSource(Protocol):
    """Anything that can list the late loans as of a date, like ``LoanLedger``."""

    def get_all_late_loans(self, today: Optional[date] = None) -> list: ...


class OverdueNotificationJob:
    """Emails every customer holding a late loan."""

    def __init__(
        self,
        loans: LateLoanSource,
        notifier: Notifier,
        subject: str,
        body: str,
    ):
        self.loans = loans
        self.notifier = notifier
        self.subject = subject
        self.body = body

    @classmethod
    def from_config(
        cls, config: Config, loans: LateLoanSource, notifier: Notifier
    ) -> "OverdueNotificationJob":
        return cls(
            loans=loans,
            notifier=notifier,
            subject=config.late_loans_subject,
            body=config.late_loans_message,
        )

    def collect_recipients(self, today: Optional[date] = None) -> list[str]:
        """Email addresses of customers with late loans, without repeats."""
        recipients = []
        seen = set()
        for loan in self.loans.get_all_late_loans(today):
            email = (loan.customer_email or "").strip()
            if not email:
                logger.warning("Late loan %s (%s) has no customer email", loan.id, loan.customer)
                continue
            if email not in seen:
                seen.add(email)
                recipients.append(email)
        return recipients

    def run(self, today: Optional[date] = None) -> list[str]:
        """Scan for late loans and notify their customers in one batch.

        Notifier errors are not retried and propagate to the caller.

        Returns:
            The addresses that were notified
        """
        recipients = self.collect_recipients(today)
        if not recipients:
            logger.info("No late loans to notify")
            return []

        self.notifier.notify(self.subject, self.body, recipients)
        logger.info("Notified %d customers about late loans", len(recipients))
        return recipients


class DailyTrigger:
    """Runs a job once a day at ``at`` (HH:MM, local time)."""

    def __init__(
        self,
        job: OverdueNotificationJob,
        at: str = "13:00",
        scheduler: Optional[schedule.Scheduler] = None,
    ):
        self.job = job
        self.at = at
        self.scheduler = scheduler or schedule.Scheduler()
        self.scheduler.every().day.at(at).do(self._scheduled_fire)

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        """True while a pass is in progress."""
        return self._lock.locked()

    @property
    def next_run(self):
        return self.scheduler.next_run

    def fire(self, today: Optional[date] = None) -> Optional[list[str]]:
        """Run the job now unless a previous pass is still running.

        Returns:
            Notified addresses, or None if the firing was skipped
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Late loan notification still running, skipping this firing")
            return None
        try:
            logger.info("Running late loan notification")
            return self.job.run(today)
        finally:
            self._lock.release()

    def _scheduled_fire(self) -> None:
        # A failed pass waits for tomorrow; schedule must see a clean return
        # to compute the next run.
        try:
            self.fire()
        except Exception:
            logger.exception("Late loan notification failed")

    def run_pending(self) -> None:
        """Fire the job if its time has come."""
        self.scheduler.run_pending()

    def run_forever(
        self,
        stop_event: Optional[threading.Event] = None,
        poll_interval: float = 30.0,
    ) -> None:
        """Block, firing daily, until ``stop_event`` is set."""
        stop = stop_event or self._stop
        logger.info("Late loan notifications scheduled daily at %s", self.at)
        while not stop.is_set():
            self.scheduler.run_pending()
            stop.wait(poll_interval)
        logger.info("Late loan scheduler stopped")

    def start(self, poll_interval: float = 30.0) -> threading.Thread:
        """Run the schedule in a background daemon thread."""
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            kwargs={"poll_interval": poll_interval},
            name="late-loan-notifier",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread started by ``start()``."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
