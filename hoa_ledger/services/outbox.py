"""Post-commit notification outbox.

Services queue NotificationEvents while they build a transaction and hand the
outbox to the notifier only after the commit succeeded. A rolled back
transaction simply drops its outbox, so no resident is told about a change
that never happened.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from hoa_ledger.services.notification_service import Notifier

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    user_id: int
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class Outbox:
    """Queue of notifications waiting for a commit."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    def __len__(self) -> int:
        return len(self.events)

    def add(self, user_id: int | None, title: str, message: str, **data: Any) -> None:
        """Queue a notification; events without a recipient are ignored."""
        if user_id is None:
            return
        self.events.append(NotificationEvent(user_id, title, message, dict(data)))

    def clear(self) -> None:
        self.events.clear()

    async def dispatch(self, notifier: Notifier | None) -> int:
        """Deliver queued events, swallowing and logging delivery failures.

        Returns:
            Number of events delivered without error
        """
        events, self.events = self.events, []
        if notifier is None:
            return 0

        delivered = 0
        for event in events:
            try:
                await notifier.notify(event.user_id, event.title, event.message, event.data)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Notification to user %s failed (%s): %s", event.user_id, event.title, e
                )
        return delivered


__all__ = ["NotificationEvent", "Outbox"]
