"""
Integration tests against a real aiohttp server.

Covers the full stack: create_instance → orchestrator → aiohttp transport.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp import test_utils

from tracked_http import (
    RequestCancelled,
    TrackedEvent,
    TransportError,
    create_instance,
)


def make_app(release: asyncio.Event) -> web.Application:
    async def user(request: web.Request) -> web.Response:
        return web.json_response({
            "id": int(request.match_info["user_id"]),
            "token": request.headers.get("X-Token"),
            "q": request.query.get("q"),
        })

    async def echo(request: web.Request) -> web.Response:
        return web.json_response({"method": request.method, "body": await request.json()})

    async def status(request: web.Request) -> web.Response:
        code = int(request.match_info["code"])
        return web.json_response({"code": code}, status=code)

    async def text(request: web.Request) -> web.Response:
        return web.Response(text="plain")

    async def slow(request: web.Request) -> web.Response:
        try:
            await asyncio.wait_for(release.wait(), timeout=2)
        except asyncio.TimeoutError:
            pass
        return web.json_response({"slow": True})

    app = web.Application()
    app.router.add_get("/api/users/{user_id}", user)
    app.router.add_route("*", "/api/echo", echo)
    app.router.add_get("/api/status/{code}", status)
    app.router.add_get("/api/text", text)
    app.router.add_get("/api/slow", slow)
    return app


@asynccontextmanager
async def serve(**options):
    release = asyncio.Event()
    server = test_utils.TestServer(make_app(release))
    await server.start_server()
    api = create_instance(
        base_url=f"http://{server.host}:{server.port}", prefix="/api", **options,
    )
    try:
        yield api
    finally:
        release.set()
        await api.close()
        await server.close()


class TestUntrackedRequests:
    """Plain requests through the real transport."""

    @pytest.mark.asyncio
    async def test_get_json(self):
        async with serve() as api:
            response = await api.get("/users/7", params={"q": "x"})

        assert response.status == 200
        assert response.data == {"id": 7, "token": None, "q": "x"}

    @pytest.mark.asyncio
    async def test_text_body(self):
        async with serve() as api:
            response = await api.get("/text")

        assert response.data == "plain"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verb", ["post", "put", "patch"])
    async def test_body_sent_as_json(self, verb):
        async with serve() as api:
            response = await getattr(api, verb)("/echo", {"name": "ada"})

        assert response.data == {"method": verb.upper(), "body": {"name": "ada"}}

    @pytest.mark.asyncio
    async def test_401_raised_with_flag(self):
        async with serve() as api:
            with pytest.raises(TransportError) as exc_info:
                await api.get("/status/401")

        assert exc_info.value.is_401
        assert exc_info.value.status == 401
        assert exc_info.value.data == {"code": 401}

    @pytest.mark.asyncio
    async def test_connection_error_passed_through(self):
        api = create_instance(base_url="http://127.0.0.1:1")
        try:
            with pytest.raises(TransportError) as exc_info:
                await api.get("/nothing")
        finally:
            await api.close()

        assert exc_info.value.response is None
        assert not exc_info.value.is_401
        assert not exc_info.value.is_502


class TestHeaders:
    """Instance headers reach the server."""

    @pytest.mark.asyncio
    async def test_set_and_remove_header(self):
        async with serve() as api:
            api.set_request_header("X-Token", "secret")
            first = await api.get("/users/1")

            api.set_request_header("X-Token", None)
            second = await api.get("/users/1")

            api.set_request_header("X-Token", "again")
            third = await api.get("/users/1")

        assert first.data["token"] == "secret"
        assert second.data["token"] is None
        assert third.data["token"] == "again"


class TestTrackedRequests:
    """Tracked requests through the real transport."""

    @pytest.mark.asyncio
    async def test_tracked_error_swallowed_and_emitted(self):
        async with serve() as api:
            events = []
            api.add_event_listener("error", events.append)
            api.add_event_listener("resolved", events.append)

            result = await api.tracked("load").get("/status/502")

        assert result is None
        assert events[0].type is TrackedEvent.ERROR
        assert events[0].error.is_502
        assert events[1].type is TrackedEvent.ERROR
        assert events[1].error is None

    @pytest.mark.asyncio
    async def test_tracked_error_thrown(self):
        async with serve() as api:
            with pytest.raises(TransportError) as exc_info:
                await api.tracked("load", throw_error=True).get("/status/500")

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_superseded_request_cancelled(self):
        async with serve() as api:
            cancelled = []
            api.add_event_listener("cancelled", cancelled.append)

            first = asyncio.ensure_future(api.tracked("search").get("/slow"))
            while "search" not in api.cancellations:
                await asyncio.sleep(0)

            second = await api.tracked("search", cancel_previous=True).get("/users/3")

            with pytest.raises(RequestCancelled):
                await first

            assert second.data["id"] == 3
            assert [e.action for e in cancelled] == ["search"]
            assert len(api.cancellations) == 0

    @pytest.mark.asyncio
    async def test_parallel_actions_independent(self):
        async with serve() as api:
            cancelled = []
            api.add_event_listener("cancelled", cancelled.append)

            a, b = await asyncio.gather(
                api.tracked("A", cancel_previous=True).get("/users/1"),
                api.tracked("B", cancel_previous=True).get("/users/2"),
            )

        assert (a.data["id"], b.data["id"]) == (1, 2)
        assert cancelled == []


@pytest.mark.asyncio
async def test_event_logging_enabled():
    api = create_instance(base_url="http://127.0.0.1:1", log_events=True)
    try:
        assert api.events.listener_count("request") == 1
        assert api.events.listener_count("resolved") == 0
    finally:
        await api.close()


class TestTimeouts:
    """Timeouts are handed to aiohttp; the timeout error is passed through."""

    @pytest.mark.asyncio
    async def test_untracked_request_timeout_raised(self):
        async with serve() as api:
            with pytest.raises(asyncio.TimeoutError):
                await api.get("/slow", timeout=0.1)

    @pytest.mark.asyncio
    async def test_tracked_request_timeout_emitted_as_error(self):
        async with serve() as api:
            errors = []
            api.add_event_listener("error", errors.append)

            result = await api.tracked("load").get("/slow", timeout=0.1)

            assert result is None
            assert len(errors) == 1
            assert isinstance(errors[0].error, asyncio.TimeoutError)
            assert len(api.cancellations) == 0

    @pytest.mark.asyncio
    async def test_instance_timeout_applies_to_every_request(self):
        async with serve(timeout_seconds=0.1) as api:
            with pytest.raises(asyncio.TimeoutError):
                await api.get("/slow")

            with pytest.raises(asyncio.TimeoutError):
                await api.tracked("load", throw_error=True).get("/slow")

    @pytest.mark.asyncio
    async def test_per_request_timeout_overrides_instance_timeout(self):
        async with serve(timeout_seconds=0.1) as api:
            response = await api.get("/users/5", timeout=5)

        assert response.data["id"] == 5
