"""
In-process change feed for session, order, item and invoice mutations.

Services publish after their transaction commits. Subscribers (the
open-session cache, the WebSocket broadcaster) are notified synchronously;
a failing subscriber is logged and skipped so delivery problems never block
or undo the mutation itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from tabkeeper.db.base import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    entity: str  # session, order, item, invoice, payment
    action: str  # created, updated, cancelled, voided ...
    venue_id: int
    session_id: Optional[int] = None
    entity_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        return {
            "event": f"{self.entity}.{self.action}",
            "venue_id": self.venue_id,
            "session_id": self.session_id,
            "entity_id": self.entity_id,
            "data": self.payload,
            "timestamp": self.occurred_at.isoformat(),
        }


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """Fan-out of committed mutations to registered listeners."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    f"Change feed listener {getattr(listener, '__name__', listener)!r} "
                    f"failed for {event.entity}.{event.action}: {e}"
                )

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


# Global change feed instance
change_feed = ChangeFeed()
