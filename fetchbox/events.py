"""
Lifecycle event notifications.

Managers report state changes (created, paused, cleaned, ...) to an explicit
list of subscribers. Subscribers run synchronously on the caller's task; an
exception in one subscriber is logged and never reaches the manager or the
other subscribers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

SANDBOX_CREATED = "sandbox.created"
SANDBOX_PAUSED = "sandbox.paused"
SANDBOX_RESUMED = "sandbox.resumed"
SANDBOX_CLEANED = "sandbox.cleaned"
SANDBOX_ERROR = "sandbox.error"
CLEANUP_STALE = "cleanup.stale"
CONTEXT_CREATED = "context.created"
CONTEXT_CLOSED = "context.closed"
PAGE_CREATED = "page.created"
PAGE_CLOSED = "page.closed"
NAVIGATION_START = "navigation.start"
NAVIGATION_COMPLETE = "navigation.complete"
SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class LifecycleEvent:
    """A single state change of a sandbox, context or page."""

    kind: str
    resource_id: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Subscriber = Callable[[LifecycleEvent], None]


class LifecycleEvents:
    """Observer list shared by the lifecycle managers."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every event.

        Returns:
            A function that removes the callback again.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, kind: str, resource_id: str, **details: Any) -> LifecycleEvent:
        event = LifecycleEvent(kind=kind, resource_id=resource_id, details=details)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Lifecycle subscriber failed for %s %s", kind, resource_id)
        return event

    def __len__(self) -> int:
        return len(self._subscribers)
