"""Late loan notifications.

Provides functionality for:
- Scanning for late loans and emailing their customers
- A daily trigger that never overlaps itself
- SMTP and console notifiers
"""

from .notifier import ConsoleNotifier, Notifier, SmtpNotifier, build_notifier
from .scheduler import DailyTrigger, OverdueNotificationJob

__all__ = [
    "ConsoleNotifier",
    "Notifier",
    "SmtpNotifier",
    "build_notifier",
    "DailyTrigger",
    "OverdueNotificationJob",
]
