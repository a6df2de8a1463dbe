"""Notifiers that deliver one message to a batch of recipients."""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional, Protocol, Sequence

from rich.console import Console
from rich.panel import Panel

from ..config import Config
from ..errors import NotificationError

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can send a subject and body to a list of addresses."""

    def notify(self, subject: str, body: str, recipients: Sequence[str]) -> None:
        ...


class SmtpNotifier:
    """Sends a single plain text email to every recipient over SMTP.

    Recipients go in the envelope only, so customers never see each
    other's addresses; the visible ``To`` header is the sender.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "library@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "SmtpNotifier":
        """Build a notifier from the SMTP settings in ``config``."""
        if not config.smtp_host:
            raise NotificationError("SMTP host is not configured")
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            sender=config.mail_sender,
            username=config.smtp_user,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
        )

    def notify(self, subject: str, body: str, recipients: Sequence[str]) -> None:
        """Send the message.

        Raises:
            NotificationError: If the SMTP conversation fails
        """
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.sender

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg, from_addr=self.sender, to_addrs=list(recipients))
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send '%s' to %d recipients: %s", subject, len(recipients), e)
            raise NotificationError(f"Failed to send email: {e}") from e

        logger.info("Sent '%s' to %d recipients", subject, len(recipients))


class ConsoleNotifier:
    """Prints notifications instead of sending them. Useful for dry runs."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def notify(self, subject: str, body: str, recipients: Sequence[str]) -> None:
        self.console.print(Panel(
            f"{body}\n\n[dim]To: {', '.join(recipients)}[/dim]",
            title=f"[bold]{subject}[/bold]",
            style="yellow",
        ))


def build_notifier(config: Config) -> Notifier:
    """SMTP delivery when configured, otherwise the console."""
    if config.has_smtp_config():
        return SmtpNotifier.from_config(config)
    logger.warning("No SMTP host configured, late loan notices go to the console")
    return ConsoleNotifier()
