"""
Contract Management Platform
Event / notification emitter.

In-process publish/subscribe used by the approval workflow:

    approval.completed   {approval_id, approved, auto_approved, project_id, modified_impact?}
    notification.send    {recipient_type, recipient_id, message, type, priority,
                          action_required, approval_id?}

Delivery is best-effort: a failing handler is logged and counted in
``delivery_failures`` and never propagates to the publisher, so decisions
are not rolled back by a notification outage. There is no retry queue.

Usage:
    bus = EventBus()
    bus.subscribe(APPROVAL_COMPLETED, handler)
    bus.publish(APPROVAL_COMPLETED, {...})
"""

import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)

APPROVAL_COMPLETED = "approval.completed"
NOTIFICATION_SEND = "notification.send"

EVENT_TYPES = {APPROVAL_COMPLETED, NOTIFICATION_SEND}


class EventBus:
    """Synchronous in-process event bus with per-event failure counters."""

    def __init__(self):
        self._handlers = defaultdict(list)
        self._lock = threading.Lock()
        self.published = defaultdict(int)
        self.delivery_failures = defaultdict(int)

    def subscribe(self, event_type: str, handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler) -> None:
        with self._lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    def publish(self, event_type: str, payload: dict) -> int:
        """
        Deliver ``payload`` to every handler of ``event_type``.

        Returns:
            Number of handlers that completed without raising.
        """
        with self._lock:
            handlers = list(self._handlers.get(event_type, []))
            self.published[event_type] += 1

        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
                delivered += 1
            except Exception:
                with self._lock:
                    self.delivery_failures[event_type] += 1
                logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__name__", repr(handler)), event_type,
                    extra={"event_type": event_type,
                           "approval_id": payload.get("approval_id")},
                )
        return delivered

    def stats(self) -> dict:
        with self._lock:
            return {
                "subscribers": {k: len(v) for k, v in self._handlers.items()},
                "published": dict(self.published),
                "delivery_failures": dict(self.delivery_failures),
            }


# ── Default subscribers ──────────────────────────────────────────────────────


def _log_approval_completed(payload):
    logger.info(
        "Approval %s completed: approved=%s auto=%s",
        payload.get("approval_id"), payload.get("approved"), payload.get("auto_approved"),
        extra={"event_type": APPROVAL_COMPLETED,
               "approval_id": payload.get("approval_id"),
               "project_id": payload.get("project_id")},
    )


def _log_notification(payload):
    logger.info(
        "Notify %s:%s [%s] %s",
        payload.get("recipient_type"), payload.get("recipient_id"),
        payload.get("priority"), payload.get("message"),
        extra={"event_type": NOTIFICATION_SEND,
               "approval_id": payload.get("approval_id")},
    )


def create_default_bus() -> EventBus:
    """Bus pre-wired with the logging subscribers used by the app factory."""
    bus = EventBus()
    bus.subscribe(APPROVAL_COMPLETED, _log_approval_completed)
    bus.subscribe(NOTIFICATION_SEND, _log_notification)
    return bus
