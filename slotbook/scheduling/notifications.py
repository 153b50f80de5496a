"""Status-change events for external messaging (SMS, push) to subscribe to."""

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, List

from slotbook.models.appointment import AppointmentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangeEvent:
    appointment_id: int
    old_status: AppointmentStatus
    new_status: AppointmentStatus
    occurred_at: datetime


Subscriber = Callable[[StatusChangeEvent], None]


class NotificationBus:
    """Fan out events to subscribers without waiting on delivery.

    Subscribers are expected to hand off quickly (enqueue, not send). A failing
    subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event: StatusChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for handler in subscribers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    'Notification subscriber failed for appointment %s (%s -> %s)',
                    event.appointment_id,
                    event.old_status.value,
                    event.new_status.value,
                )

    def publish_all(self, events: List[StatusChangeEvent]) -> None:
        for event in events:
            self.publish(event)
