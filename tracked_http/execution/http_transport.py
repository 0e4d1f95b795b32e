"""
aiohttp-backed HTTP transport.

Provides:
- A lazily created, reusable ClientSession
- URL building from base URL + prefix
- Per-call cancel functions handed to the caller before the request starts
- TransportError for non-2xx responses and client errors, RequestCancelled
  for requests aborted through their cancel function

Timeouts are plain aiohttp ClientTimeout values, passed through untouched.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import aiohttp

from tracked_http.core.errors import RequestCancelled, TransportError
from tracked_http.infrastructure.logging import get_logger

logger = get_logger(__name__)


Canceler = Callable[[Optional[str]], None]


@dataclass
class RequestSpec:
    """Description of one HTTP call."""

    method: str
    url: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    params: Optional[dict[str, Any]] = None
    timeout: Optional[float] = None


@dataclass
class TransportResponse:
    """Decoded HTTP response."""

    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    method: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def build_url(base_url: str, url: str) -> str:
    """Join `url` onto `base_url` unless it is already absolute."""
    if not base_url or urlsplit(url).scheme:
        return url
    if not url:
        return base_url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def decode_body(raw: bytes, content_type: str, charset: Optional[str]) -> Any:
    """JSON for JSON content types, text otherwise, None when empty."""
    if not raw:
        return None
    text = raw.decode(charset or "utf-8", errors="replace")
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            logger.warning("Response declared JSON but failed to parse", content_type=content_type)
    return text


class HttpTransport:
    """
    Thin async HTTP client.

    Usage:
        transport = HttpTransport(base_url="https://api.example.com/v1")
        response = await transport.send(RequestSpec("GET", "/users/1"))
        await transport.close()
    """

    def __init__(
        self,
        base_url: str = "",
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url
        self.timeout = (
            aiohttp.ClientTimeout(total=timeout_seconds)
            if timeout_seconds is not None
            else None
        )
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            if self.timeout is not None:
                self._session = aiohttp.ClientSession(timeout=self.timeout)
            else:
                self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    def is_cancel(error: BaseException) -> bool:
        """Whether `error` marks a request aborted through its cancel function."""
        return isinstance(error, RequestCancelled)

    async def send(
        self,
        spec: RequestSpec,
        on_cancel: Optional[Callable[[Canceler], Any]] = None,
    ) -> TransportResponse:
        """
        Perform the request described by `spec`.

        Args:
            spec: Method, URL, body, headers, params and timeout
            on_cancel: Receives this call's cancel function before the
                request is awaited

        Returns:
            The decoded response

        Raises:
            RequestCancelled: the cancel function was invoked
            TransportError: non-2xx status or aiohttp client failure
        """
        task = asyncio.ensure_future(self._perform(spec))
        reasons: list[Optional[str]] = []

        def cancel(message: Optional[str] = None) -> None:
            if task.done():
                return
            reasons.append(message)
            task.cancel()

        if on_cancel is not None:
            on_cancel(cancel)

        try:
            return await task
        except asyncio.CancelledError:
            if not reasons:
                # Our own caller was cancelled, not this request
                raise
            raise RequestCancelled(reasons[0]) from None

    async def _perform(self, spec: RequestSpec) -> TransportResponse:
        session = await self._get_session()
        url = build_url(self.base_url, spec.url)
        method = spec.method.upper()

        kwargs: dict[str, Any] = {"headers": spec.headers, "params": spec.params}
        if isinstance(spec.body, (dict, list)):
            kwargs["json"] = spec.body
        elif spec.body is not None:
            kwargs["data"] = spec.body
        if spec.timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=spec.timeout)

        try:
            async with session.request(method, url, **kwargs) as resp:
                raw = await resp.read()
                response = TransportResponse(
                    status=resp.status,
                    data=decode_body(raw, resp.content_type, resp.charset),
                    headers=dict(resp.headers),
                    url=str(resp.url),
                    method=method,
                )
        except aiohttp.ClientError as e:
            logger.warning("HTTP request failed", method=method, url=url, error=str(e))
            raise TransportError(str(e) or type(e).__name__, method=method, url=url) from e

        if not response.ok:
            logger.debug("HTTP error status", method=method, url=url, status=response.status)
            raise TransportError(
                f"Request failed with status code {response.status}",
                status=response.status,
                response=response,
                method=method,
                url=url,
            )

        return response
