"""Builds a ready-to-use RequestOrchestrator from configuration."""

from pathlib import Path
from typing import Any, Optional

import aiohttp

from tracked_http.core.event_bus import EventLogger
from tracked_http.core.orchestrator import RequestOrchestrator
from tracked_http.execution.http_transport import HttpTransport
from tracked_http.infrastructure.config import InstanceConfig, load_config
from tracked_http.infrastructure.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_instance(
    config: Optional[InstanceConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
    **overrides: Any,
) -> RequestOrchestrator:
    """
    Create an independent tracked-http instance.

    Args:
        config: Full configuration; defaults are used when omitted
        session: Existing aiohttp session to reuse (not closed by the instance)
        **overrides: InstanceConfig fields overriding `config`

    Returns:
        A RequestOrchestrator with its own listeners, tokens and headers
    """
    if config is None:
        config = InstanceConfig(**overrides)
    elif overrides:
        config = InstanceConfig(**{**config.model_dump(), **overrides})

    transport = HttpTransport(
        base_url=config.full_base_url,
        timeout_seconds=config.timeout_seconds,
        session=session,
    )
    instance = RequestOrchestrator(
        transport,
        default_error=config.default_error,
        default_cancel_message=config.default_cancel_message,
        error_transformer=config.error_transformer,
        headers=config.headers,
    )

    if config.log_events:
        EventLogger(log_level=config.event_log_level).attach(instance.events)

    logger.debug(
        "Instance created",
        base_url=config.full_base_url or None,
        log_events=config.log_events,
    )
    return instance


def instance_from_config(
    config_path: str | Path | None = None,
    session: Optional[aiohttp.ClientSession] = None,
    **overrides: Any,
) -> RequestOrchestrator:
    """
    Load configuration, set up logging from it, and create an instance.

    Resolution order is the one `load_config` uses: defaults, YAML file,
    TRACKED_HTTP_* environment, then keyword overrides.
    """
    config = load_config(config_path, **overrides)

    configure_logging(
        log_level=config.observability.log_level,
        log_format=config.observability.log_format,
    )

    logger.info(
        "Configuration loaded",
        config_file=str(config_path) if config_path else None,
        log_level=config.observability.log_level,
    )
    return create_instance(config, session=session)
