"""
Cancellation token table for tracked requests.

Holds at most one token per action. A token binds the action name to the
cancel function of the request currently running under that name.
Cancelling is advisory: the cancel function arms a signal the transport
observes, the request settles later on its own.

Usage:
    registry = CancellationRegistry(bus, default_message="superseded")
    token = registry.create("search", cancel_fn)
    registry.cancel("search")          # cancel_fn("superseded"), emits `cancelled`
    registry.clear("search", token)    # no-op, already removed
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from tracked_http.core.event_bus import EventBus, TrackedEvent
from tracked_http.infrastructure.logging import get_logger

logger = get_logger(__name__)


Canceler = Callable[[Optional[str]], None]
CancelMessageFn = Callable[..., str]
CancelMessage = Union[str, CancelMessageFn]


@dataclass(eq=False)
class CancelToken:
    """Binds an action to the cancel function of its in-flight request."""

    action: str
    cancel: Canceler = field(repr=False)
    created_at: float = field(default_factory=time.time)

    @property
    def age_seconds(self) -> float:
        return time.time() - self.created_at


def resolve_message(message: Optional[CancelMessage], token: CancelToken) -> Optional[str]:
    """A literal message is used as-is; a callable gets the token's details."""
    if callable(message):
        return message(action=token.action, created_at=token.created_at)
    return message


class CancellationRegistry:
    """
    Token table keyed by action name.

    All mutations are synchronous, so a cancel + create pair issued from one
    coroutine can never interleave with another coroutine.
    """

    def __init__(
        self,
        bus: EventBus,
        default_message: Optional[CancelMessage] = None,
    ):
        self.bus = bus
        self.default_message = default_message
        self._tokens: dict[str, CancelToken] = {}
        self._cancelled_count = 0

    def create(self, action: str, cancel: Canceler) -> Optional[CancelToken]:
        """
        Register the cancel function of a starting request.

        Overwrites any token already stored for `action`. Empty actions
        are ignored.
        """
        if not action:
            return None

        token = CancelToken(action=action, cancel=cancel)
        self._tokens[action] = token
        return token

    def cancel(
        self,
        actions: Union[str, Iterable[str]],
        message: Optional[CancelMessage] = None,
    ) -> list[str]:
        """
        Cancel the in-flight requests of one or more actions.

        Args:
            actions: An action name or an iterable of action names
            message: Literal reason, or callable taking `action` and
                `created_at` keywords. Defaults to the registry message.

        Returns:
            Actions that had a token and were cancelled
        """
        if isinstance(actions, str):
            actions = [actions]
        if message is None:
            message = self.default_message

        cancelled: list[str] = []
        for action in actions:
            token = self._tokens.get(action)
            if token is None:
                continue

            reason = resolve_message(message, token)
            token.cancel(reason)
            self.bus.dispatch(TrackedEvent.CANCELLED, action)
            self.clear(action, token)

            self._cancelled_count += 1
            cancelled.append(action)
            logger.info(
                "Request cancelled",
                action=action,
                reason=reason,
                age_seconds=round(token.age_seconds, 3),
            )

        return cancelled

    def clear(self, action: str, token: Optional[CancelToken] = None) -> None:
        """
        Drop the token for `action` without cancelling it.

        When `token` is given the entry is only dropped if it is still that
        token, so a superseded request cannot clear its successor's entry.
        """
        current = self._tokens.get(action)
        if current is None:
            return
        if token is not None and current is not token:
            return
        del self._tokens[action]

    def get(self, action: str) -> Optional[CancelToken]:
        return self._tokens.get(action)

    def __contains__(self, action: object) -> bool:
        return action in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    @property
    def active_actions(self) -> list[str]:
        """Actions with a request in flight, oldest first."""
        return [t.action for t in sorted(self._tokens.values(), key=lambda t: t.created_at)]

    @property
    def stats(self) -> dict[str, int]:
        return {
            "active": len(self._tokens),
            "cancelled": self._cancelled_count,
        }
