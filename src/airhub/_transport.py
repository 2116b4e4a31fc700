"""HTTP transport for the backend air quality API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from airhub._constants import USER_AGENT
from airhub.config import HubConfig
from airhub.exceptions import AirHubTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any: ...


class HttpTransport:
    """JSON-over-HTTP transport backed by an ``aiohttp`` session."""

    def __init__(self, config: HubConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        """GET *endpoint* and return the decoded JSON body.

        Raises :class:`AirHubTransportError` for network failures, timeouts,
        non-2xx responses and bodies that are not JSON.
        """
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        headers = {"accept": "application/json", "user-agent": USER_AGENT}

        _logger.debug("GET %s params=%s", url, dict(params or {}))

        try:
            async with self._http.get(url, params=params, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise AirHubTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except AirHubTransportError:
            raise
        except TimeoutError as exc:
            raise AirHubTransportError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc
        except aiohttp.ClientError as exc:
            raise AirHubTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise AirHubTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
