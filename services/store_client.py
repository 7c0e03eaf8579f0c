"""HTTP client for the submission store (Supabase / PostgREST REST API).

PostgREST exposes each table as ``/{table}`` with filters as query params
(``id=eq.42``).  The service needs three verbs from it:

- :meth:`StoreClient.select`: read rows (paged by the caller)
- :meth:`StoreClient.count`: exact row count via ``Prefer: count=exact``
  and the ``Content-Range`` header, for diagnostics
- :meth:`StoreClient.update`: patch matching rows and return them
  (``Prefer: return=representation``) so a write that matched nothing is
  visible to the caller

Gateway errors (502/503/504) and transport errors are retried with
exponential backoff; every request here is idempotent (reads, and a
``file_hash`` update that always writes the same digest for a row).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from config.settings import get_settings

logger = logging.getLogger(__name__)

_client: StoreClient | None = None

MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5  # seconds, doubles each attempt
# PostgREST answers these while the database or its pooler restarts
RETRYABLE_STATUS = frozenset({502, 503, 504})


class StoreClientError(Exception):
    """The store rejected a request (PostgREST error body or bare status)."""

    def __init__(self, status_code: int, detail: str, url: str = "", code: str = ""):
        self.status_code = status_code
        self.detail = detail
        self.url = url
        self.code = code  # PostgREST / Postgres error code, e.g. "42P01"
        label = f"{status_code} {code}".strip()
        super().__init__(f"Store API {label}: {detail} ({url})")


class StoreClient:
    """Async PostgREST client authenticated with the service key."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        self._base_url = f"{settings.store_base_url.rstrip('/')}{settings.store_api_prefix}"
        self._timeout = settings.store_timeout
        self._service_key = settings.store_service_key
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._http is not None:
            return
        headers = {"Accept": "application/json"}
        if self._service_key:
            headers["apikey"] = self._service_key
            headers["Authorization"] = f"Bearer {self._service_key}"
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            transport=self._transport,
        )
        logger.info("StoreClient started — base_url=%s", self._base_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("StoreClient closed")

    # -- PostgREST verbs -----------------------------------------------------

    async def select(self, table: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``/{table}`` and return the decoded body (normally a row list)."""
        response = await self._send("GET", table, params=params)
        return response.json() if response.content else []

    async def count(self, table: str, params: dict[str, Any] | None = None) -> int | None:
        """Exact number of rows matching ``params``; None if the store won't say."""
        query = {**(params or {}), "limit": 1}
        response = await self._send(
            "HEAD", table, params=query, headers={"Prefer": "count=exact"}
        )
        return parse_content_range(response.headers.get("content-range", ""))

    async def update(
        self,
        table: str,
        match: dict[str, str],
        values: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """PATCH rows whose columns equal ``match``; return the updated rows.

        An empty list means no row matched.
        """
        params = {column: f"eq.{value}" for column, value in match.items()}
        response = await self._send(
            "PATCH",
            table,
            params=params,
            json_body=values,
            headers={"Prefer": "return=representation"},
        )
        if not response.content:
            return []
        rows = response.json()
        return rows if isinstance(rows, list) else [rows]

    # -- transport -----------------------------------------------------------

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """One logical request, retried on transport errors and gateway statuses.

        Raises :class:`StoreClientError` for any other non-2xx status, and
        re-raises the last ``httpx.TransportError`` once attempts run out.
        """
        client = self._ensure_started()
        path = f"/{table}"

        for attempt in range(1, MAX_ATTEMPTS + 1):
            t0 = time.monotonic()
            try:
                response = await client.request(
                    method, path, params=params, json=json_body, headers=headers
                )
            except httpx.TransportError as exc:
                logger.warning(
                    "%s %s → %s (%.0fms) [attempt %d/%d]",
                    method, path, type(exc).__name__,
                    (time.monotonic() - t0) * 1000, attempt, MAX_ATTEMPTS,
                )
                if attempt == MAX_ATTEMPTS:
                    raise
                await asyncio.sleep(RETRY_BASE_DELAY * 2 ** (attempt - 1))
                continue

            logger.info(
                "%s %s → %d (%.0fms)",
                method, path, response.status_code, (time.monotonic() - t0) * 1000,
            )
            if response.is_success:
                return response
            if response.status_code in RETRYABLE_STATUS and attempt < MAX_ATTEMPTS:
                await asyncio.sleep(RETRY_BASE_DELAY * 2 ** (attempt - 1))
                continue
            raise _store_error(response)

        raise AssertionError("unreachable")

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("StoreClient not started — call await client.start() first")
        return self._http


def parse_content_range(value: str) -> int | None:
    """Total from a PostgREST ``Content-Range`` header (``"0-24/3573"``, ``"*/0"``)."""
    _, _, total = value.partition("/")
    return int(total) if total.isdigit() else None


def _store_error(response: httpx.Response) -> StoreClientError:
    """Build an error from PostgREST's ``{"code", "message", "details"}`` body."""
    detail = f"HTTP {response.status_code}"
    code = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = str(body.get("code") or "")
        detail = str(body.get("message") or detail)
        if body.get("details"):
            detail = f"{detail} ({body['details']})"
    elif response.text:
        detail = response.text[:500]
    return StoreClientError(
        status_code=response.status_code,
        detail=detail,
        url=str(response.request.url),
        code=code,
    )


def get_store_client() -> StoreClient:
    """Return the module-level StoreClient singleton (create if needed)."""
    global _client
    if _client is None:
        _client = StoreClient()
    return _client
