"""
Domo Dataset Client

Fetches raw call records from the Domo BI connector for a sync window.

Two strategies are supported and the caller picks one explicitly:
- Query API: SQL against the dataset, paged with LIMIT/OFFSET. Fast, but
  Domo truncates long text columns (Conversation) at 1024 characters.
- Full export: streams the whole dataset as CSV and filters by window on
  the client. Slow for large datasets, but conversation text is complete.

Authentication uses OAuth client credentials. A 401 on any request
triggers exactly one re-authentication and retry; other HTTP errors are
raised immediately as DomoFetchError.

Author: CallSync Team
Date: 2026-01-12
"""

import csv
import logging
import time
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from prometheus_client import Counter

from callsync.common.config import settings
from callsync.services.transform import CALL_START_COLUMN, parse_timestamp
from callsync.services.window import SyncWindow

logger = logging.getLogger("domo")

DOMO_REQUESTS = Counter('domo_requests_total', 'Requests sent to the Domo API', ['endpoint'])
DOMO_REAUTH = Counter('domo_reauth_total', 'Re-authentications after a 401')

TOKEN_PATH = "/oauth/token"
# Refresh the token this many seconds before it expires
TOKEN_EXPIRY_MARGIN = 60


class DomoAuthError(Exception):
    """Credentials rejected, or a request still unauthorized after re-authentication."""


class DomoFetchError(Exception):
    """HTTP or transport failure while fetching dataset records."""


class DomoClient:
    """
    Async client for one Domo dataset.
    
    Args:
        client_id: OAuth client id
        client_secret: OAuth client secret
        dataset_id: Dataset GUID holding the call records
        api_url: Base URL of the Domo public API
        page_size: Rows per query API page
        client: Optional httpx.AsyncClient (tests inject a MockTransport)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        dataset_id: str,
        api_url: str = settings.domo_api_url,
        page_size: int = settings.domo_query_page_size,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.domo_timeout_seconds,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.dataset_id = dataset_id
        self.api_url = api_url.rstrip("/")
        self.page_size = page_size
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.access_token: Optional[str] = None
        self.token_expiry = 0.0

    async def __aenter__(self) -> "DomoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def authenticate(self) -> None:
        """Obtain a fresh access token with the client credentials grant."""
        DOMO_REQUESTS.labels(endpoint="token").inc()
        try:
            response = await self._client.get(
                f"{self.api_url}{TOKEN_PATH}",
                params={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as ex:
            raise DomoAuthError(f"Authentication request failed: {ex}") from ex

        if response.is_error:
            raise DomoAuthError(f"Authentication failed: {response.status_code} - {response.text[:200]}")

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise DomoAuthError("Authentication response had no access_token")

        self.access_token = token
        self.token_expiry = time.monotonic() + float(data.get("expires_in") or 0)
        logger.info("[domo] Authenticated with Domo API")

    async def ensure_authenticated(self) -> None:
        if not self.access_token or time.monotonic() >= self.token_expiry - TOKEN_EXPIRY_MARGIN:
            await self.authenticate()

    async def _send(self, method: str, path: str, stream: bool = False, **kwargs) -> httpx.Response:
        """
        Send an authenticated request, re-authenticating once on 401.
        
        With stream=True the caller owns the returned response and must
        close it.
        """
        url = f"{self.api_url}{path}"
        extra_headers = kwargs.pop("headers", {})

        for attempt in (1, 2):
            await self.ensure_authenticated()
            headers = {"Authorization": f"Bearer {self.access_token}", **extra_headers}
            request = self._client.build_request(method, url, headers=headers, **kwargs)

            try:
                response = await self._client.send(request, stream=stream)
            except httpx.HTTPError as ex:
                raise DomoFetchError(f"Request to {path} failed: {ex}") from ex

            if response.status_code == 401:
                await response.aclose()
                self.access_token = None
                if attempt == 2:
                    raise DomoAuthError(f"Still unauthorized after re-authentication: {path}")
                DOMO_REAUTH.inc()
                logger.warning("[domo] Token rejected, re-authenticating")
                continue

            if response.is_error:
                body = (await response.aread()).decode("utf-8", "replace")[:200]
                await response.aclose()
                raise DomoFetchError(f"Failed to fetch {path}: {response.status_code} - {body}")

            return response

        raise DomoAuthError(f"Unauthorized: {path}")  # pragma: no cover

    async def get_dataset_info(self) -> Dict[str, Any]:
        """Dataset metadata (name, rows, columns, schema)."""
        DOMO_REQUESTS.labels(endpoint="dataset").inc()
        response = await self._send("GET", f"/v1/datasets/{self.dataset_id}")
        return response.json()

    def build_query(self, window: Optional[SyncWindow], limit: int, offset: int = 0) -> str:
        """SQL for one query API page; the end date is inclusive."""
        query = "SELECT * FROM table"
        where = []
        if window is not None:
            end_exclusive = window.end_date + timedelta(days=1)
            where.append(f"`{CALL_START_COLUMN}` >= '{window.start_date.isoformat()}'")
            where.append(f"`{CALL_START_COLUMN}` < '{end_exclusive.isoformat()}'")
        if where:
            query += " WHERE " + " AND ".join(where)
        query += f" ORDER BY `{CALL_START_COLUMN}` DESC"
        query += f" LIMIT {int(limit)} OFFSET {int(offset)}"
        return query

    async def fetch_dataset(
        self,
        window: Optional[SyncWindow] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of records through the query API.
        
        Returns:
            List of column -> value dicts
        """
        query = self.build_query(window, limit or self.page_size, offset)
        logger.debug(f"[domo] Query: {query}")

        DOMO_REQUESTS.labels(endpoint="query").inc()
        response = await self._send(
            "POST",
            f"/v1/datasets/query/execute/{self.dataset_id}",
            json={"sql": query},
        )

        data = response.json()
        columns = data.get("columns")
        rows = data.get("rows") or []
        if columns:
            return [dict(zip(columns, row)) for row in rows]
        return rows

    async def fetch_all_records(
        self,
        window: Optional[SyncWindow] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Page through the query API until a short page or the limit."""
        records: List[Dict[str, Any]] = []
        offset = 0

        while True:
            page_size = self.page_size
            if limit is not None:
                page_size = min(page_size, limit - len(records))
                if page_size <= 0:
                    break

            batch = await self.fetch_dataset(window, limit=page_size, offset=offset)
            records.extend(batch)

            if len(batch) < page_size:
                break
            offset += len(batch)
            logger.info(f"[domo] Fetched {len(records)} records so far...")

        return records

    async def iter_export_rows(self) -> AsyncIterator[Dict[str, Optional[str]]]:
        """
        Stream every dataset row from the CSV export.
        
        Quoted fields may span lines, so physical lines are buffered until
        their quote count is balanced. Closing the generator early closes
        the HTTP response without reading the remainder.
        """
        DOMO_REQUESTS.labels(endpoint="export").inc()
        response = await self._send(
            "GET",
            f"/v1/datasets/{self.dataset_id}/data",
            stream=True,
            params={"includeHeader": "true"},
            headers={"Accept": "text/csv"},
        )

        try:
            headers = None
            async for fields in _csv_records(response.aiter_text()):
                if headers is None:
                    headers = [h.strip().lstrip("\ufeff") for h in fields]
                    continue
                yield {
                    header: (fields[idx] if idx < len(fields) and fields[idx] != "" else None)
                    for idx, header in enumerate(headers)
                }
        except httpx.HTTPError as ex:
            raise DomoFetchError(f"Export stream failed: {ex}") from ex
        finally:
            await response.aclose()

    async def export_dataset_full(
        self,
        window: Optional[SyncWindow] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch untruncated records via the full export, filtered to the window.
        
        Rows whose call start is missing or unparseable never match a window.
        Stops consuming the stream once limit matching rows are collected.
        """
        records: List[Dict[str, Any]] = []
        scanned = 0
        rows = self.iter_export_rows()

        try:
            async for row in rows:
                scanned += 1
                if window is not None and not window.contains(parse_timestamp(row.get(CALL_START_COLUMN))):
                    continue
                records.append(row)
                if limit is not None and len(records) >= limit:
                    break
        finally:
            await rows.aclose()

        logger.info(f"[domo] Export scanned {scanned} rows, {len(records)} in window")
        return records

    async def fetch(
        self,
        window: SyncWindow,
        limit: Optional[int] = None,
        full_export: bool = True,
    ) -> List[Dict[str, Any]]:
        """Fetch raw records for the window with the chosen strategy."""
        if full_export:
            return await self.export_dataset_full(window, limit=limit)
        return await self.fetch_all_records(window, limit=limit)


async def _text_lines(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Split decoded text on line feeds only, keeping line endings intact."""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        start = 0
        end = buffer.find("\n", start)
        while end >= 0:
            yield buffer[start:end + 1]
            start = end + 1
            end = buffer.find("\n", start)
        buffer = buffer[start:]
    if buffer:
        yield buffer


async def _csv_records(chunks: AsyncIterator[str]) -> AsyncIterator[List[str]]:
    # Carriage returns inside quoted fields are data and must survive
    pending = ""
    quotes = 0

    async for line in _text_lines(chunks):
        pending += line
        quotes += line.count('"')
        if quotes % 2:
            continue

        text = pending[:-1] if pending.endswith("\n") else pending
        if text.endswith("\r"):
            text = text[:-1]
        pending, quotes = "", 0
        if not text.strip():
            continue
        yield next(csv.reader([text]))

    if pending:
        logger.warning("[domo] Export ended inside a quoted field, dropping partial row")


def client_from_settings(client: Optional[httpx.AsyncClient] = None) -> DomoClient:
    return DomoClient(
        client_id=settings.domo_client_id,
        client_secret=settings.domo_client_secret,
        dataset_id=settings.domo_dataset_id,
        client=client,
    )
