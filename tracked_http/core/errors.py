"""
Error taxonomy and transport error normalization.

Every error raised by this package derives from TrackedHttpError:
- ConfigurationError: invalid listener registration or factory
- EventDispatchError: dispatch of an event type the bus does not know
- RequestCancelled: a request aborted through its cancel token
- TransportError: the server answered with a non-2xx status or the
  connection failed
- UnknownApiError: produced by the default error factory
"""

from __future__ import annotations
import copy
from typing import TYPE_CHECKING, Any, Callable, Optional

from tracked_http.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from tracked_http.execution.http_transport import TransportResponse

logger = get_logger(__name__)


ErrorFactory = Callable[[], BaseException]
ErrorTransformer = Callable[["TransportError"], BaseException]


class TrackedHttpError(Exception):
    """Base class for all tracked-http errors."""
    pass


class ConfigurationError(TrackedHttpError):
    """Raised when a listener, event name or factory is invalid."""
    pass


class EventDispatchError(TrackedHttpError):
    """Raised when dispatching an event type with no listener list."""
    pass


class RequestCancelled(TrackedHttpError):
    """Raised to the caller whose request was cancelled."""

    def __init__(self, message: Optional[str] = None, action: str = ""):
        super().__init__(message or "Request cancelled")
        self.message = message
        self.action = action


class UnknownApiError(TrackedHttpError):
    """Fallback error when no other error context exists."""
    pass


class TransportError(TrackedHttpError):
    """
    A failed HTTP exchange.

    `response` is None when no response was received (DNS failure,
    refused connection, reset). The `is_401` / `is_502` flags are set by
    ErrorNormalizer on a copy of the error, never on the original.
    """

    def __init__(
        self,
        message: str = "Request failed",
        status: Optional[int] = None,
        response: Optional["TransportResponse"] = None,
        method: str = "",
        url: str = "",
    ):
        super().__init__(message)
        self.status = status
        self.response = response
        self.method = method
        self.url = url
        self.is_401 = False
        self.is_502 = False

    @property
    def data(self) -> Any:
        """Decoded response body, if any."""
        return self.response.data if self.response is not None else None

    def with_flags(self, **flags: bool) -> "TransportError":
        """Return a shallow copy with the given flags set."""
        flagged = copy.copy(self)
        for name, value in flags.items():
            setattr(flagged, name, value)
        return flagged


def passthrough_transformer(error: TransportError) -> BaseException:
    """Default transformer: leave the error untouched."""
    return error


class ErrorNormalizer:
    """
    Maps raw transport failures to the categorized errors callers see.

    Usage:
        normalizer = ErrorNormalizer(default_error=UnknownApiError)
        raise normalizer.transform(error)
    """

    def __init__(
        self,
        default_error: ErrorFactory,
        transformer: ErrorTransformer = passthrough_transformer,
    ):
        self.default_error = default_error
        self.transformer = transformer

    def transform(self, error: Optional[BaseException]) -> BaseException:
        """
        Normalize a failure.

        Args:
            error: The raised exception, or None when there is none

        Returns:
            The normalized error (possibly the same object)
        """
        if error is None:
            return self.default_error()

        # RequestCancelled is not a TransportError and falls through here
        if not isinstance(error, TransportError) or error.response is None:
            return error

        if error.status == 401:
            return error.with_flags(is_401=True)
        if error.status == 502:
            return error.with_flags(is_502=True)

        transformed = self.transformer(error)
        if transformed is not error:
            logger.debug(
                "Transport error transformed",
                status=error.status,
                error_type=type(transformed).__name__,
            )
        return transformed
