"""HTTP client for the remote relational backend (PostgREST-compatible REST API).

Wraps ``httpx.AsyncClient`` with:
- base URL construction
- ``apikey`` + Bearer authentication headers
- optional schema profile headers
- request timing logs
- mapping of network failures and non-2xx responses to
  :class:`BackendUnavailableError`

The client never retries; retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from config.settings import Settings
from errors.exceptions import BackendUnavailableError

logger = logging.getLogger(__name__)

BACKEND_NAME = "remote"


class RestClient:
    """Async HTTP client for the remote record tables."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15,
        schema: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._schema = schema
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RestClient:
        return cls(
            base_url=settings.remote_base_url,
            api_key=settings.remote_api_key,
            timeout=settings.remote_timeout,
            schema=settings.remote_schema,
        )

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Create the underlying ``httpx.AsyncClient`` connection pool."""
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=self._default_headers(),
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=30,
                max_keepalive_connections=15,
                keepalive_expiry=30,
            ),
        )
        logger.info("RestClient started — base_url=%s", self._base_url)

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("RestClient closed")

    @property
    def started(self) -> bool:
        return self._http is not None

    # -- public API ----------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None when empty).

        Raises :class:`BackendUnavailableError` on network errors and on any
        non-2xx response.
        """
        client = self._ensure_started()
        t0 = time.monotonic()
        try:
            response = await client.request(
                method, path, params=params, json=json_body, headers=headers
            )
        except httpx.TransportError as exc:
            elapsed_ms = (time.monotonic() - t0) * 1000
            logger.warning(
                "%s %s → network error (%.0fms): %s", method, path, elapsed_ms, exc
            )
            raise BackendUnavailableError(BACKEND_NAME, str(exc)) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info("%s %s → %d (%.0fms)", method, path, response.status_code, elapsed_ms)

        if response.status_code >= 400:
            detail = response.text[:500] if response.text else f"HTTP {response.status_code}"
            raise BackendUnavailableError(
                BACKEND_NAME,
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    # -- internals -----------------------------------------------------------

    def _default_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        if self._schema:
            headers["Accept-Profile"] = self._schema
            headers["Content-Profile"] = self._schema
        return headers

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("RestClient not started — call await client.start() first")
        return self._http
