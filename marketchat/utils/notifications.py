import logging
from collections import deque
from typing import Deque, List, Tuple

from marketchat.errors import ChatError, NotAvailable


logger = logging.getLogger(__name__)


class LoggingNotifier:
    """User-facing notices; the default sink only writes them to the log."""

    def info(self, message: str) -> None:
        logger.info("notice: %s", message)

    def error(self, message: str) -> None:
        logger.warning("notice: %s", message)


class QueueNotifier(LoggingNotifier):
    """Keeps notices until the UI drains them."""

    def __init__(self, maxlen: int = 100) -> None:
        self._items: Deque[Tuple[str, str]] = deque(maxlen=maxlen)

    def info(self, message: str) -> None:
        super().info(message)
        self._items.append(("info", message))

    def error(self, message: str) -> None:
        super().error(message)
        self._items.append(("error", message))

    @property
    def errors(self) -> List[str]:
        return [text for level, text in self._items if level == "error"]

    def drain(self) -> List[Tuple[str, str]]:
        items = list(self._items)
        self._items.clear()
        return items


def report_failure(notifier: LoggingNotifier, exc: ChatError, action: str) -> None:
    """Log the raw error and show one friendly notice (none for NotAvailable)."""
    if isinstance(exc, NotAvailable):
        logger.warning("Could not %s, backing store unavailable: %s", action, exc)
        return
    logger.warning("Could not %s (%s): %s", action, exc.kind, exc)
    notifier.error(exc.user_message)
