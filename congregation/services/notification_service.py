"""Fire-and-forget notification dispatch.

Delivery (email, SMS, push) belongs to an outside collaborator. The attendance
core only hands messages to a backend and never waits on or retries it: a
failing backend is logged and the caller carries on.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

logger = logging.getLogger(__name__)

class NotificationKind(Enum):
    REGISTRATION_INVITE = 'registration_invite'
    WELCOME = 'welcome'
    FOLLOW_UP_ASSIGNED = 'follow_up_assigned'

@dataclass
class Notification:
    target_id: Optional[int]
    kind: NotificationKind
    payload: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['kind'] = self.kind.value
        data['created_at'] = self.created_at.isoformat()
        return data

def log_backend(notification: Notification) -> None:
    logger.info("Notification %s for %s: %s", notification.kind.value,
                notification.target_id, notification.payload)

class MemoryBackend:
    """Records messages instead of delivering them. Used by the test config."""

    def __init__(self):
        self.outbox: List[Notification] = []

    def __call__(self, notification: Notification) -> None:
        self.outbox.append(notification)

BACKENDS: Dict[str, Callable[[], Callable[[Notification], None]]] = {
    'log': lambda: log_backend,
    'memory': MemoryBackend,
}

class NotificationService:
    """Hands notifications to a delivery backend."""

    def __init__(self, backend: Callable[[Notification], None] = log_backend):
        self.backend = backend

    @classmethod
    def from_config(cls, config) -> 'NotificationService':
        name = config.get('NOTIFICATION_BACKEND', 'log')
        if name not in BACKENDS:
            raise ValueError(f"Unknown notification backend: {name}")
        return cls(BACKENDS[name]())

    def notify(self, target_id: Optional[int], kind: NotificationKind,
               payload: Dict[str, Any]) -> bool:
        """Dispatch a notification. Returns False if the backend failed."""
        notification = Notification(target_id=target_id, kind=kind, payload=payload)
        try:
            self.backend(notification)
        except Exception:
            logger.exception("Failed to dispatch %s notification for %s", kind.value, target_id)
            return False
        return True

    def sent(self, kind: NotificationKind = None) -> List[Notification]:
        """Messages recorded by a memory backend; delivering backends keep none."""
        outbox = getattr(self.backend, 'outbox', [])
        if kind is None:
            return list(outbox)
        return [n for n in outbox if n.kind == kind]

def get_notifier() -> NotificationService:
    return current_app.extensions['notifier']
