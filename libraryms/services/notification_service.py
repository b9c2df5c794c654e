# libraryms/services/notification_service.py

"""
User-facing notifications (the "toasts" of the web front-end).

Fire-and-forget: callers never look at the result and a broken notifier
must never break the operation that triggered it.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Deque, List, Optional, Protocol
from uuid import UUID

from loguru import logger

from libraryms.core.config import settings


class Severity(str, Enum):
    Info = "info"
    Success = "success"
    Warning = "warning"
    Error = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity
    actor_id: Optional[UUID] = None
    title: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


class Notifier(Protocol):
    def notify(
        self,
        message: str,
        severity: Severity = Severity.Info,
        *,
        actor_id: Optional[UUID] = None,
        title: Optional[str] = None,
    ) -> None: ...


class FeedNotifier:
    """Logs every notification and keeps the latest ones for the UI to poll."""

    def __init__(self, maxlen: int = 100):
        self._feed: Deque[Notification] = deque(maxlen=maxlen)
        self._lock = Lock()

    def notify(self, message, severity=Severity.Info, *, actor_id=None, title=None) -> None:
        try:
            item = Notification(
                message=message,
                severity=Severity(severity),
                actor_id=actor_id,
                title=title,
            )
            with self._lock:
                self._feed.append(item)
            level = "WARNING" if item.severity in (Severity.Warning, Severity.Error) else "INFO"
            logger.log(level, "🔔 [{}] {}", item.severity.value, message)
        except Exception:
            logger.exception("Notification dropped: {}", message)

    def recent(self, actor_id: Optional[UUID] = None, limit: int = 20) -> List[Notification]:
        with self._lock:
            items = list(self._feed)
        if actor_id is not None:
            items = [n for n in items if n.actor_id in (None, actor_id)]
        return list(reversed(items))[:limit]

    def clear(self) -> None:
        with self._lock:
            self._feed.clear()


notifier = FeedNotifier(maxlen=settings.NOTIFICATION_FEED_SIZE)


def get_notifier() -> FeedNotifier:
    return notifier
