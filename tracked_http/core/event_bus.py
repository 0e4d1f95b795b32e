"""
Lifecycle event bus for tracked requests.

Each instance owns one listener list per lifecycle event:
- request: a tracked request is about to be sent
- success / error / cancelled: the request settled
- resolved: fires after every terminal event, never after `request`

Listeners are plain callables invoked synchronously in registration
order. The same callable may be registered several times; every
registration gets its own unsubscribe function.

Usage:
    bus = EventBus()
    unsubscribe = bus.register("success", lambda event: print(event.result))
    bus.dispatch(TrackedEvent.SUCCESS, "load_user", result=response)
    unsubscribe()
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from tracked_http.core.errors import ConfigurationError, EventDispatchError
from tracked_http.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TrackedEvent(str, Enum):
    """Lifecycle events of a tracked request."""

    REQUEST = "request"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"

    @property
    def is_terminal(self) -> bool:
        """Whether this event ends a request's lifecycle."""
        return self in (
            TrackedEvent.SUCCESS,
            TrackedEvent.ERROR,
            TrackedEvent.CANCELLED,
        )


@dataclass(frozen=True)
class EventPayload:
    """What listeners receive. `result` is set for success, `error` for error."""

    action: str
    type: TrackedEvent
    result: Any = None
    error: Optional[BaseException] = None


Listener = Callable[[EventPayload], Any]
EventName = Union[TrackedEvent, str]


@dataclass(eq=False)
class _Registration:
    """One occurrence of a listener; compared by identity."""

    listener: Listener


def parse_event(event_type: EventName) -> TrackedEvent:
    """Resolve an event name, case-insensitively, to a TrackedEvent."""
    if isinstance(event_type, TrackedEvent):
        return event_type
    if isinstance(event_type, str):
        try:
            return TrackedEvent(event_type.lower())
        except ValueError:
            pass
    raise ConfigurationError(
        f"Event {event_type!r} is not a valid event to subscribe to."
    )


class EventBus:
    """
    Per-instance registry of lifecycle listeners.

    Listener exceptions are logged and counted; they never interrupt the
    remaining listeners or the request that triggered the dispatch.
    """

    def __init__(self):
        self._listeners: dict[TrackedEvent, list[_Registration]] = {
            event: [] for event in TrackedEvent
        }
        self._dispatched_count = 0
        self._error_count = 0

    def register(
        self,
        event_type: EventName,
        listener: Listener,
    ) -> Callable[[], None]:
        """
        Subscribe a listener to one event type.

        Args:
            event_type: One of the five lifecycle events
            listener: Callable receiving an EventPayload

        Returns:
            Function removing this registration (safe to call twice)
        """
        event = parse_event(event_type)

        if not callable(listener):
            raise ConfigurationError(
                "Event listener must be callable, instead received "
                f"{type(listener).__name__}."
            )

        registration = _Registration(listener)
        self._listeners[event].append(registration)
        logger.debug("Event listener registered", event_type=event.value)

        def unsubscribe() -> None:
            registrations = self._listeners[event]
            if registration in registrations:
                registrations.remove(registration)
                logger.debug("Event listener removed", event_type=event.value)

        return unsubscribe

    def dispatch(
        self,
        event_type: TrackedEvent,
        action: str,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """
        Invoke the listeners of `event_type`, then the `resolved` listeners.

        `resolved` listeners are skipped for `request` and receive a payload
        without result or error.
        """
        try:
            event = TrackedEvent(event_type)
        except ValueError:
            raise EventDispatchError(
                f'Failed to trigger event "{event_type}". '
                "This is likely a bug and should be reported."
            ) from None

        payload = EventPayload(action=action, type=event, result=result, error=error)
        self._notify(event, payload)

        if event is not TrackedEvent.REQUEST:
            self._notify(
                TrackedEvent.RESOLVED,
                EventPayload(action=action, type=event),
            )

        self._dispatched_count += 1

    def _notify(self, event: TrackedEvent, payload: EventPayload) -> None:
        # Snapshot so listeners may (un)subscribe while we iterate
        for registration in list(self._listeners[event]):
            try:
                registration.listener(payload)
            except Exception as e:
                self._error_count += 1
                logger.error(
                    "Event listener error",
                    event_type=event.value,
                    action=payload.action,
                    error=str(e),
                )

    def listener_count(self, event_type: Optional[EventName] = None) -> int:
        """Number of registrations for one event, or for all events."""
        if event_type is None:
            return sum(len(r) for r in self._listeners.values())
        return len(self._listeners[parse_event(event_type)])

    @property
    def stats(self) -> dict[str, int]:
        """Get event bus statistics."""
        return {
            "dispatched": self._dispatched_count,
            "listener_errors": self._error_count,
            "listeners": self.listener_count(),
        }


class EventLogger:
    """
    Logs every lifecycle event for audit trail.

    Attach with `attach(bus)`; `resolved` is not logged since it mirrors
    the terminal event.
    """

    def __init__(self, log_level: str = "debug"):
        self.log_level = log_level
        self._event_counts: dict[TrackedEvent, int] = {}

    def handle(self, event: EventPayload) -> None:
        """Handle an event by logging it."""
        self._event_counts[event.type] = self._event_counts.get(event.type, 0) + 1

        log_fn = getattr(logger, self.log_level.lower(), logger.debug)

        fields: dict[str, Any] = {"action": event.action, "event_type": event.type.value}
        if event.error is not None:
            fields["error"] = str(event.error)
            fields["status"] = getattr(event.error, "status", None)
        if event.result is not None:
            fields["status"] = getattr(event.result, "status", None)

        log_fn("Request lifecycle event", **fields)

    def attach(self, bus: EventBus) -> list[Callable[[], None]]:
        """Subscribe to every non-meta event; returns the unsubscribe functions."""
        return [
            bus.register(event, self.handle)
            for event in TrackedEvent
            if event is not TrackedEvent.RESOLVED
        ]

    def get_counts(self) -> dict[str, int]:
        """Get event counts by type."""
        return {k.value: v for k, v in self._event_counts.items()}
