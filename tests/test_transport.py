from __future__ import annotations

from collections.abc import AsyncIterator

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from airhub._transport import HttpTransport
from airhub.config import HubConfig
from airhub.exceptions import AirHubTransportError


async def _latest(request: web.Request) -> web.Response:
    return web.json_response([{"stationId": "a", "lat": 1.0, "lng": 2.0}])


async def _echo(request: web.Request) -> web.Response:
    return web.json_response(dict(request.query))


async def _unavailable(request: web.Request) -> web.Response:
    return web.Response(status=503, text="maintenance")


async def _not_json(request: web.Request) -> web.Response:
    return web.Response(text="<html>oops</html>", content_type="text/html")


@pytest_asyncio.fixture
async def server() -> AsyncIterator[TestServer]:
    app = web.Application()
    app.router.add_get("/api/airquality/latest", _latest)
    app.router.add_get("/echo", _echo)
    app.router.add_get("/down", _unavailable)
    app.router.add_get("/html", _not_json)
    test_server = TestServer(app)
    await test_server.start_server()
    try:
        yield test_server
    finally:
        await test_server.close()


@pytest_asyncio.fixture
async def transport(server: TestServer) -> AsyncIterator[HttpTransport]:
    config = HubConfig(base_url=str(server.make_url("/")), cache_enabled=False)
    async with aiohttp.ClientSession() as session:
        yield HttpTransport(config, session)


@pytest.mark.asyncio
async def test_get_json_decodes_body(transport: HttpTransport) -> None:
    assert await transport.get_json("/api/airquality/latest") == [{"stationId": "a", "lat": 1.0, "lng": 2.0}]


@pytest.mark.asyncio
async def test_get_json_sends_query_params(transport: HttpTransport) -> None:
    assert await transport.get_json("/echo", {"stationId": "hn-01"}) == {"stationId": "hn-01"}


@pytest.mark.asyncio
async def test_non_2xx_raises_transport_error(transport: HttpTransport) -> None:
    with pytest.raises(AirHubTransportError) as exc_info:
        await transport.get_json("/down")

    assert exc_info.value.status_code == 503
    assert exc_info.value.endpoint == "/down"


@pytest.mark.asyncio
async def test_invalid_json_raises_transport_error(transport: HttpTransport) -> None:
    with pytest.raises(AirHubTransportError, match="Invalid JSON"):
        await transport.get_json("/html")


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error() -> None:
    config = HubConfig(base_url="http://127.0.0.1:9", request_timeout=2.0, cache_enabled=False)
    async with aiohttp.ClientSession() as session:
        with pytest.raises(AirHubTransportError):
            await HttpTransport(config, session).get_json("/api/airquality/latest")
