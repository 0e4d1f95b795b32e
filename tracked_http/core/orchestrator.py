"""
Request orchestration: named actions, cancellation and lifecycle events.

A tracked request belongs to an action. Starting one with
`cancel_previous=True` cancels whatever is still in flight under the same
action. Every tracked request emits `request` and then exactly one of
`success`, `error` or `cancelled` (each followed by `resolved`).

Untracked requests go straight to the transport: no events, no tokens,
failures always raised.

Usage:
    api = create_instance(base_url="https://api.example.com")
    api.add_event_listener("error", report_error)

    user = await api.get("/users/1")
    results = await api.tracked("search", cancel_previous=True).get(
        "/search", params={"q": "shoes"},
    )
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, NoReturn, Optional, Union

from tracked_http.core.cancellation import CancellationRegistry, CancelMessage
from tracked_http.core.errors import (
    ConfigurationError,
    ErrorFactory,
    ErrorNormalizer,
    ErrorTransformer,
    RequestCancelled,
    passthrough_transformer,
)
from tracked_http.core.event_bus import EventBus, EventName, Listener, TrackedEvent
from tracked_http.execution.http_transport import (
    HttpTransport,
    RequestSpec,
    TransportResponse,
)
from tracked_http.infrastructure.logging import get_logger

logger = get_logger(__name__)


PerformRequest = Callable[[str], Awaitable[TransportResponse]]


@dataclass(frozen=True)
class Tracking:
    """How a tracked request participates in cancellation and errors."""

    action: str
    cancel_previous: bool = False
    throw_error: bool = False


class RequestOrchestrator:
    """
    Coordinates the event bus, the cancellation registry and the transport.

    Each instance owns its listeners, tokens and headers; nothing is shared
    between instances.
    """

    def __init__(
        self,
        transport: HttpTransport,
        default_error: ErrorFactory,
        default_cancel_message: Optional[CancelMessage] = None,
        error_transformer: ErrorTransformer = passthrough_transformer,
        headers: Optional[dict[str, str]] = None,
    ):
        self.transport = transport
        self.events = EventBus()
        self.cancellations = CancellationRegistry(
            self.events,
            default_message=default_cancel_message,
        )
        self.normalizer = ErrorNormalizer(default_error, error_transformer)
        self._headers: dict[str, str] = dict(headers or {})

    async def __aenter__(self) -> "RequestOrchestrator":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the transport's HTTP session."""
        await self.transport.close()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_event_listener(
        self,
        event_type: EventName,
        listener: Listener,
    ) -> Callable[[], None]:
        """Subscribe to a lifecycle event; returns the unsubscribe function."""
        return self.events.register(event_type, listener)

    def set_default_error(self, factory: ErrorFactory) -> None:
        """Replace the factory used when a failure carries no error."""
        if not callable(factory):
            raise ConfigurationError("Default error must be a callable returning an exception.")
        self.normalizer.default_error = factory

    def set_request_header(self, name: str, value: Optional[str]) -> None:
        """Set a header sent with every request; None removes it."""
        if value is None:
            self._headers.pop(name, None)
        else:
            self._headers = {**self._headers, name: value}

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def cancel_request(
        self,
        actions: Union[str, Iterable[str]],
        message: Optional[CancelMessage] = None,
    ) -> list[str]:
        """Cancel in-flight tracked requests; emits `cancelled` for each."""
        return self.cancellations.cancel(actions, message)

    # ------------------------------------------------------------------
    # Untracked verbs
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        **options: Any,
    ) -> TransportResponse:
        return await self._send(self._build_spec(method, url, body, options))

    async def get(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("GET", url, **options)

    async def delete(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("DELETE", url, **options)

    async def post(self, url: str, body: Any = None, **options: Any) -> TransportResponse:
        return await self.request("POST", url, body, **options)

    async def put(self, url: str, body: Any = None, **options: Any) -> TransportResponse:
        return await self.request("PUT", url, body, **options)

    async def patch(self, url: str, body: Any = None, **options: Any) -> TransportResponse:
        return await self.request("PATCH", url, body, **options)

    def tracked(
        self,
        action: str,
        cancel_previous: bool = False,
        throw_error: bool = False,
    ) -> "TrackedMethods":
        """Verb set whose requests are tracked under `action`."""
        if not action:
            raise ConfigurationError(
                "Tracked requests need an action name; use the untracked verbs instead."
            )
        return TrackedMethods(self, Tracking(action, cancel_previous, throw_error))

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def tracked_request(
        self,
        tracking: Tracking,
        perform: PerformRequest,
    ) -> Optional[TransportResponse]:
        """
        Run `perform(action)` inside the request lifecycle.

        Returns:
            The response, or None when the request failed and
            `throw_error` is False

        Raises:
            RequestCancelled: this request was superseded or cancelled
            Exception: the normalized failure, when `throw_error` is True
        """
        action = tracking.action

        if tracking.cancel_previous and action:
            self.cancellations.cancel([action], self.cancellations.default_message)

        self.events.dispatch(TrackedEvent.REQUEST, action)

        try:
            result = await perform(action)
        except Exception as raw:
            if self.transport.is_cancel(raw):
                logger.debug("Tracked request superseded", action=action)
                raise

            error = self.normalizer.transform(raw)
            logger.info(
                "Tracked request failed",
                action=action,
                error=str(error),
                status=getattr(error, "status", None),
            )
            self.events.dispatch(TrackedEvent.ERROR, action, error=error)

            if tracking.throw_error:
                _reraise(error, raw)
            return None

        self.events.dispatch(TrackedEvent.SUCCESS, action, result=result)
        return result

    async def _send(
        self,
        spec: RequestSpec,
        action: str = "",
        normalize: bool = True,
    ) -> TransportResponse:
        """
        Hand `spec` to the transport, registering a token when `action` is set.

        Tracked callers pass `normalize=False`; tracked_request normalizes
        and decides whether to raise.
        """
        token = None

        def register(cancel):
            nonlocal token
            token = self.cancellations.create(action, cancel)

        try:
            return await self.transport.send(spec, on_cancel=register if action else None)
        except RequestCancelled as e:
            e.action = action
            raise
        except Exception as raw:
            if not normalize:
                raise
            _reraise(self.normalizer.transform(raw), raw)
        finally:
            if token is not None:
                self.cancellations.clear(action, token)

    def _build_spec(
        self,
        method: str,
        url: str,
        body: Any,
        options: dict[str, Any],
    ) -> RequestSpec:
        headers = {**self._headers, **(options.pop("headers", None) or {})}
        unknown = set(options) - {"params", "timeout"}
        if unknown:
            raise TypeError(f"Unexpected request options: {sorted(unknown)}")
        return RequestSpec(
            method=method.upper(),
            url=url,
            body=body,
            headers=headers,
            params=options.get("params"),
            timeout=options.get("timeout"),
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "events": self.events.stats,
            "cancellations": self.cancellations.stats,
        }


class TrackedMethods:
    """The request verbs, each routed through `tracked_request`."""

    def __init__(self, orchestrator: RequestOrchestrator, tracking: Tracking):
        self._orchestrator = orchestrator
        self.tracking = tracking

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        **options: Any,
    ) -> Optional[TransportResponse]:
        spec = self._orchestrator._build_spec(method, url, body, options)
        return await self._orchestrator.tracked_request(
            self.tracking,
            lambda action: self._orchestrator._send(spec, action, normalize=False),
        )

    async def get(self, url: str, **options: Any) -> Optional[TransportResponse]:
        return await self.request("GET", url, **options)

    async def delete(self, url: str, **options: Any) -> Optional[TransportResponse]:
        return await self.request("DELETE", url, **options)

    async def post(self, url: str, body: Any = None, **options: Any) -> Optional[TransportResponse]:
        return await self.request("POST", url, body, **options)

    async def put(self, url: str, body: Any = None, **options: Any) -> Optional[TransportResponse]:
        return await self.request("PUT", url, body, **options)

    async def patch(self, url: str, body: Any = None, **options: Any) -> Optional[TransportResponse]:
        return await self.request("PATCH", url, body, **options)


def _reraise(error: BaseException, raw: BaseException) -> NoReturn:
    """Raise the normalized error, chained to the raw one when they differ."""
    if error is raw:
        raise raw
    raise error from raw
