"""
Request lifecycle tracking on top of aiohttp.

Contains:
- create_instance: build an independent client instance
- instance_from_config: load config, configure logging, build an instance
- RequestOrchestrator: tracked / untracked request verbs
- EventBus, TrackedEvent, EventPayload: lifecycle events
- CancellationRegistry: per-action cancel tokens
- Error taxonomy and ErrorNormalizer
"""

from tracked_http.core.cancellation import CancellationRegistry, CancelToken
from tracked_http.core.errors import (
    ConfigurationError,
    ErrorNormalizer,
    EventDispatchError,
    RequestCancelled,
    TrackedHttpError,
    TransportError,
    UnknownApiError,
)
from tracked_http.core.event_bus import EventBus, EventLogger, EventPayload, TrackedEvent
from tracked_http.core.orchestrator import RequestOrchestrator, TrackedMethods, Tracking
from tracked_http.execution.http_transport import (
    HttpTransport,
    RequestSpec,
    TransportResponse,
)
from tracked_http.infrastructure.config import InstanceConfig, load_config
from tracked_http.infrastructure.logging import configure_logging, get_logger
from tracked_http.instance import create_instance, instance_from_config

__all__ = [
    "create_instance",
    "instance_from_config",
    # Orchestration
    "RequestOrchestrator",
    "TrackedMethods",
    "Tracking",
    # Events
    "EventBus",
    "EventLogger",
    "EventPayload",
    "TrackedEvent",
    # Cancellation
    "CancellationRegistry",
    "CancelToken",
    # Errors
    "TrackedHttpError",
    "ConfigurationError",
    "EventDispatchError",
    "RequestCancelled",
    "TransportError",
    "UnknownApiError",
    "ErrorNormalizer",
    # Transport
    "HttpTransport",
    "RequestSpec",
    "TransportResponse",
    # Config / logging
    "InstanceConfig",
    "load_config",
    "configure_logging",
    "get_logger",
]
