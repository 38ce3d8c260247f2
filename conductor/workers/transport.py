"""HTTP transport to worker services.

Workers expose ``POST /execute`` and ``GET /health``. Anything other than a
2xx JSON object is a transport failure; exceeding the bound is a timeout.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import aiohttp

from conductor.errors import DispatchTimeoutError, TransportError

logger = logging.getLogger(__name__)


class WorkerTransport(Protocol):
    async def execute(
        self,
        endpoint: str,
        payload: dict[str, Any],
        timeout_s: float,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        ...

    async def probe(self, endpoint: str, timeout_s: float) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class AiohttpWorkerTransport:
    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        timeout_s: float,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_s)
        try:
            async with session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=timeout,
            ) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise TransportError(
                        f"{method} {url} returned HTTP {response.status}",
                        details={"status": response.status, "body": body[:500]},
                    )
                try:
                    data = await response.json(content_type=None)
                except ValueError as exc:
                    raise TransportError(f"{method} {url} returned invalid JSON") from exc
        except asyncio.TimeoutError as exc:
            raise DispatchTimeoutError(
                f"{method} {url} exceeded {timeout_s:.3f}s",
                details={"timeout_s": timeout_s},
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        if not isinstance(data, dict):
            raise TransportError(f"{method} {url} returned a non-object body")
        return data

    async def execute(
        self,
        endpoint: str,
        payload: dict[str, Any],
        timeout_s: float,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"{endpoint.rstrip('/')}/execute",
            timeout_s,
            payload=payload,
            headers=headers,
        )

    async def probe(self, endpoint: str, timeout_s: float) -> dict[str, Any]:
        return await self._request("GET", f"{endpoint.rstrip('/')}/health", timeout_s)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
