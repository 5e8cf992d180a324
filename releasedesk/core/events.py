"""
Event bus for releasedesk.

In-process pub/sub so side effects of the release pipeline (notifications,
audit logging, cache invalidation) can hook in without the services knowing
about them.

Event types:
- release.submitted: A new release was finalized
- release.updated: An existing release was resubmitted
- release.status_changed: An operator moved a release through the workflow
- release.deleted: A release and its assets were removed
- backup.completed: A scheduled or manual database backup finished (or failed)

Usage:
    from releasedesk.core.events import event_bus

    async def on_status(event: ReleaseStatusChangedEvent) -> None:
        print(f"Release {event.release_id} is now {event.status}")

    await event_bus.subscribe("release.status_changed", on_status)
    await event_bus.publish(ReleaseStatusChangedEvent(release_id=1, status="Live"))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Coroutine[Any, Any, None]]


@dataclass
class Event:
    """Base class for all events."""

    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {"type": self.event_type}


@dataclass
class ReleaseSubmittedEvent(Event):
    """Fired after a new release has been committed."""

    event_type: str = field(default="release.submitted", init=False)
    release_id: int = 0
    user_id: int = 0
    title: str = ""
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "release_id": self.release_id,
            "user_id": self.user_id,
            "title": self.title,
            "warnings": list(self.warnings),
        }


@dataclass
class ReleaseUpdatedEvent(Event):
    """Fired after an existing release has been resubmitted."""

    event_type: str = field(default="release.updated", init=False)
    release_id: int = 0
    user_id: int = 0
    title: str = ""
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "release_id": self.release_id,
            "user_id": self.user_id,
            "title": self.title,
            "warnings": list(self.warnings),
        }


@dataclass
class ReleaseStatusChangedEvent(Event):
    """Fired when an operator changes workflow fields of a release."""

    event_type: str = field(default="release.status_changed", init=False)
    release_id: int = 0
    previous_status: str = ""
    status: str = ""
    changed_by: int = 0
    rejection_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.event_type,
            "release_id": self.release_id,
            "previous_status": self.previous_status,
            "status": self.status,
            "changed_by": self.changed_by,
        }
        if self.rejection_reason is not None:
            result["rejection_reason"] = self.rejection_reason
        return result


@dataclass
class ReleaseDeletedEvent(Event):
    """Fired after a release row and its asset directory were removed."""

    event_type: str = field(default="release.deleted", init=False)
    release_id: int = 0
    deleted_by: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "release_id": self.release_id,
            "deleted_by": self.deleted_by,
        }


@dataclass
class BackupCompletedEvent(Event):
    """Fired when a database backup finishes; `error` is set on failure."""

    event_type: str = field(default="backup.completed", init=False)
    path: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.event_type, "path": self.path}
        if self.error:
            result["error"] = self.error
        return result


class EventBus:
    """
    Simple async pub/sub event bus.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions ("release.*" or "*")
    - Error isolation (one failing handler doesn't affect the others)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to subscribe to. Use ".*" suffix for wildcards.
            handler: Async function to call when an event is published.
        """
        async with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            logger.debug("Subscribed to %s: %s", event_type, handler)

    async def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a handler. Returns True if it was subscribed."""
        async with self._lock:
            handlers = self._handlers.get(event_type)
            if not handlers or handler not in handlers:
                return False
            handlers.remove(handler)
            logger.debug("Unsubscribed from %s: %s", event_type, handler)
            return True

    def _matching(self, event_type: str) -> list[EventHandler]:
        matching: list[EventHandler] = list(self._handlers.get(event_type, ()))
        for pattern, handlers in self._handlers.items():
            if pattern == "*":
                matching.extend(handlers)
            elif pattern.endswith(".*") and event_type.startswith(pattern[:-1]):
                matching.extend(handlers)
        return matching

    async def publish(self, event: Event) -> int:
        """
        Publish an event to all subscribed handlers.

        Returns:
            Number of handlers that completed without raising.
        """
        async with self._lock:
            handlers = self._matching(event.event_type)

        delivered = 0
        # Handlers run outside the lock so they may (un)subscribe.
        for handler in handlers:
            try:
                await handler(event)
                delivered += 1
            except Exception as e:
                logger.exception("Error in event handler for %s: %s", event.event_type, e)

        if delivered:
            logger.debug("Published %s to %d handlers", event.event_type, delivered)
        return delivered

    async def clear(self) -> None:
        """Remove all subscriptions."""
        async with self._lock:
            self._handlers.clear()
            logger.debug("Cleared all event subscriptions")


# Global event bus instance
event_bus = EventBus()
