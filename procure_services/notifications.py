"""
procure_services.notifications -- notification dispatchers.

The workflow hands every committed ``NotificationEvent`` to a
``NotificationDispatcher``.  Delivery (mail, chat, queue) is outside the
system; these dispatchers cover logging and tests.
"""

from __future__ import annotations

import threading

from procure_kernel.domain.events import NotificationEvent
from procure_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingDispatcher:
    """Writes each event as a structured ``notification_due`` log record."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            "notification_due",
            extra={
                "event_type": event.event_type,
                "recipients": list(event.recipients),
                "requisition_id": str(event.requisition_id),
                "requisition_number": event.requisition_number,
            },
        )


class RecordingDispatcher:
    """Keeps every dispatched event in memory. Thread-safe."""

    def __init__(self) -> None:
        self._events: list[NotificationEvent] = []
        self._lock = threading.Lock()

    def dispatch(self, event: NotificationEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> tuple[NotificationEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def of_type(self, event_cls: type) -> tuple[NotificationEvent, ...]:
        return tuple(e for e in self.events if isinstance(e, event_cls))

    def for_recipient(self, recipient: str) -> tuple[NotificationEvent, ...]:
        return tuple(e for e in self.events if recipient in e.recipients)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
