"""Configuration management for libraryloans.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_LATE_LOANS_MESSAGE = (
    "Attention! You have a late book loan. "
    "Please return the book as soon as possible."
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Overdue detection
    loan_threshold_days: int

    # Late loan notifications
    late_loans_subject: str
    late_loans_message: str
    notify_at: str  # HH:MM, local time

    # Mail delivery
    mail_sender: str
    smtp_host: Optional[str]
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    smtp_starttls: bool

    # Logging
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "LIBRARY_DB_PATH",
            str(Path.home() / ".libraryloans" / "library.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            loan_threshold_days=int(os.environ.get("LIBRARY_LOAN_THRESHOLD_DAYS", "4")),
            late_loans_subject=os.environ.get(
                "LIBRARY_LATE_LOANS_SUBJECT", "Late book loan"
            ),
            late_loans_message=os.environ.get(
                "LIBRARY_LATE_LOANS_MESSAGE", DEFAULT_LATE_LOANS_MESSAGE
            ),
            notify_at=os.environ.get("LIBRARY_NOTIFY_AT", "13:00"),
            mail_sender=os.environ.get("LIBRARY_MAIL_SENDER", "library@localhost"),
            smtp_host=os.environ.get("LIBRARY_SMTP_HOST"),
            smtp_port=int(os.environ.get("LIBRARY_SMTP_PORT", "587")),
            smtp_user=os.environ.get("LIBRARY_SMTP_USER"),
            smtp_password=os.environ.get("LIBRARY_SMTP_PASSWORD"),
            smtp_starttls=_env_bool("LIBRARY_SMTP_STARTTLS", True),
            log_level=os.environ.get("LIBRARY_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_threshold_days < 0:
            errors.append(
                f"Loan threshold must not be negative: {self.loan_threshold_days}"
            )

        try:
            datetime.strptime(self.notify_at, "%H:%M")
        except ValueError:
            errors.append(f"Notification time must be HH:MM: {self.notify_at!r}")

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors

    def has_smtp_config(self) -> bool:
        """Check if SMTP delivery is configured."""
        return bool(self.smtp_host)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
