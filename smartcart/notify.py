import logging
import time
from collections import deque
from typing import Deque, List, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Variant = Literal['default', 'destructive']


class Notification(BaseModel):
    title: str
    description: str = ''
    variant: Variant = 'default'
    created_at: float = Field(default_factory=time.time)


class Notifier:
    """
    User-facing notification channel shared by the scanner, checkout and lookups.

    Notifications are kept in a bounded buffer until the UI drains them.
    """
    def __init__(self, maxlen: int = 50):
        self._pending: Deque[Notification] = deque(maxlen=maxlen)
        self._history: Deque[Notification] = deque(maxlen=maxlen)

    def notify(self, title: str, description: str = '', variant: Variant = 'default') -> Notification:
        notification = Notification(title=title, description=description, variant=variant)
        self._pending.append(notification)
        self._history.append(notification)

        if variant == 'destructive':
            logger.warning(f'{title}: {description}')
        else:
            logger.info(f'{title}: {description}')
        return notification

    def error(self, title: str, description: str = '') -> Notification:
        return self.notify(title, description, variant='destructive')

    def drain(self) -> List[Notification]:
        """Returns and clears all notifications the UI has not seen yet"""
        pending = list(self._pending)
        self._pending.clear()
        return pending

    def recent(self, limit: int = 10) -> List[Notification]:
        return list(self._history)[-limit:]
