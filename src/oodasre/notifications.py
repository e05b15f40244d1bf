"""Outbound notification channel written to by the state machine and orchestrator."""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from oodasre.models import utcnow

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    PHASE_EXITED = "phase_exited"
    PHASE_ENTERED = "phase_entered"
    PHASE_CHANGED = "phase_changed"
    EVIDENCE_COLLECTED = "evidence_collected"
    HYPOTHESIS_ADDED = "hypothesis_added"
    ACTION_EXECUTED = "action_executed"
    ESCALATION_STEP = "escalation_step"
    VERIFICATION_COMPLETED = "verification_completed"
    INCIDENT_RESOLVED = "incident_resolved"
    INCIDENT_FAILED = "incident_failed"


class Notification(BaseModel):
    kind: NotificationKind
    incident_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


Subscriber = Callable[[Notification], None]


class NotificationChannel:
    """
    Fan-out channel. Consumers subscribe with a callable or take a queue.

    A subscriber that raises is logged and skipped; publishing never fails
    the investigation.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 0) -> queue.Queue:
        """Return a queue that receives every published notification."""
        q: queue.Queue = queue.Queue(maxsize=maxsize)

        def put(notification: Notification) -> None:
            q.put_nowait(notification)

        self.subscribe(put)
        return q

    def publish(self, notification: Notification) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(notification)
            except Exception as e:
                logger.warning(
                    "Notification subscriber failed: %s",
                    e,
                    extra={"kind": notification.kind.value, "incident_id": notification.incident_id},
                    exc_info=True,
                )

    def emit(self, kind: NotificationKind, incident_id: str, **data: Any) -> None:
        self.publish(Notification(kind=kind, incident_id=incident_id, data=data))
