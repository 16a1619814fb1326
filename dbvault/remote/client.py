"""REST client for the hosted database platform's export, import and query API.

Every response is normalized here so callers never see the platform's
nested envelope shapes (``{success, result, errors}``, signed URLs that
may sit at ``result.signed_url`` or ``result.result.signed_url`` and so on).
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ..errors import RateLimitedError, UpstreamProtocolError
from ..utils.logging import get_logger

logger = get_logger("remote.client")

NOT_IMPORTING = "Not currently importing anything."


@dataclass
class ExportStatus:
    bookmark: Optional[str] = None
    signed_url: Optional[str] = None

    @property
    def ready(self) -> bool:
        return bool(self.signed_url)


@dataclass
class ImportUpload:
    upload_url: str
    filename: Optional[str] = None


@dataclass
class IngestStatus:
    """One ingest poll. ``done`` is True when the platform reports nothing left to import."""

    done: bool = False
    bookmark: Optional[str] = None
    error: Optional[str] = None
    num_queries: Optional[int] = None


@dataclass
class QueryResult:
    rows: list[dict] = field(default_factory=list)
    meta: dict = field(default_factory=dict)


def _first_error(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("message")
    return None


def _signed_url(result: Optional[dict]) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    url = result.get("signed_url")
    if not url and isinstance(result.get("result"), dict):
        url = result["result"].get("signed_url")
    return url


class PlatformClient:
    """Async client for one platform account.

    A custom ``transport`` can be passed for tests (``httpx.MockTransport``).
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._account_id = account_id
        self._api_base = api_base.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _database_url(self, database_id: str, action: str = "") -> str:
        url = f"{self._api_base}/accounts/{self._account_id}/d1/database/{database_id}"
        return f"{url}/{action}" if action else url

    @staticmethod
    def _check_throttled(response: httpx.Response) -> None:
        if response.status_code == 429:
            raise RateLimitedError(
                f"Rate limited by platform (429): {response.text[:200]}",
                upstream_status=429,
            )

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            raise UpstreamProtocolError(
                f"Invalid JSON from platform: {response.text[:200]}",
                upstream_status=response.status_code,
            )
        if not isinstance(body, dict):
            raise UpstreamProtocolError("Unexpected platform response shape")
        return body

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    async def start_export(self, database_id: str) -> ExportStatus:
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "export"),
                headers=self._headers,
                json={"output_format": "polling"},
            )
        self._check_throttled(response)
        if not response.is_success:
            raise UpstreamProtocolError(
                f"Failed to start export: {response.text}",
                upstream_status=response.status_code,
            )
        body = self._json(response)
        if not body.get("success"):
            raise UpstreamProtocolError(_first_error(body) or "Export failed")
        result = body.get("result") or {}
        return ExportStatus(bookmark=result.get("at_bookmark"), signed_url=_signed_url(result))

    async def poll_export(self, database_id: str, bookmark: str) -> ExportStatus:
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "export"),
                headers=self._headers,
                json={"output_format": "polling", "current_bookmark": bookmark},
            )
        self._check_throttled(response)
        if not response.is_success:
            raise UpstreamProtocolError(
                f"Poll failed: {response.reason_phrase} - {response.text}",
                upstream_status=response.status_code,
            )
        result = self._json(response).get("result") or {}
        return ExportStatus(
            bookmark=result.get("at_bookmark") or bookmark,
            signed_url=_signed_url(result),
        )

    async def download(self, signed_url: str) -> bytes:
        async with self._client() as client:
            response = await client.get(signed_url)
        if not response.is_success:
            raise UpstreamProtocolError(
                f"Failed to download export: {response.reason_phrase}",
                upstream_status=response.status_code,
            )
        return response.content

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------
    async def init_import(self, database_id: str, etag: str) -> ImportUpload:
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "import"),
                headers=self._headers,
                json={"action": "init", "etag": etag},
            )
        self._check_throttled(response)
        body = self._json(response)
        if not response.is_success or not body.get("success"):
            message = _first_error(body) or response.reason_phrase
            raise UpstreamProtocolError(
                f"Failed to initialize import: {message}",
                upstream_status=response.status_code,
            )
        result = body.get("result") or {}
        if not result.get("upload_url"):
            raise UpstreamProtocolError("Failed to get upload URL for import")
        return ImportUpload(upload_url=result["upload_url"], filename=result.get("filename"))

    async def upload(self, upload_url: str, content: bytes) -> Optional[str]:
        """PUT the dump to the signed upload URL and return the reported ETag, unquoted."""
        async with self._client() as client:
            response = await client.put(upload_url, content=content)
        if not response.is_success:
            raise UpstreamProtocolError(
                f"Failed to upload SQL: {response.reason_phrase}",
                upstream_status=response.status_code,
            )
        etag = response.headers.get("ETag")
        return etag.replace('"', "") if etag else None

    async def ingest(self, database_id: str, etag: str, filename: Optional[str]) -> IngestStatus:
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "import"),
                headers=self._headers,
                json={"action": "ingest", "etag": etag, "filename": filename},
            )
        self._check_throttled(response)
        body = self._json(response)
        if not response.is_success or not body.get("success"):
            message = _first_error(body) or response.reason_phrase
            raise UpstreamProtocolError(
                f"Failed to start ingestion: {message}",
                upstream_status=response.status_code,
            )
        result = body.get("result") or {}
        return IngestStatus(bookmark=result.get("at_bookmark"), num_queries=result.get("num_queries"))

    async def poll_import(self, database_id: str, bookmark: Optional[str]) -> IngestStatus:
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "import"),
                headers=self._headers,
                json={"action": "poll", "current_bookmark": bookmark},
            )
        self._check_throttled(response)
        body = self._json(response)
        result = body.get("result") or {}

        if result.get("success") is True or result.get("error") == NOT_IMPORTING:
            return IngestStatus(done=True, bookmark=bookmark, num_queries=result.get("num_queries"))

        error = _first_error(body)
        if error is None and result.get("error"):
            error = result["error"]
        return IngestStatus(done=False, bookmark=result.get("at_bookmark") or bookmark, error=error)

    # ------------------------------------------------------------------
    # Query and listing
    # ------------------------------------------------------------------
    async def query(self, database_id: str, sql: str, params: Optional[list] = None) -> QueryResult:
        payload: dict[str, Any] = {"sql": sql}
        if params:
            payload["params"] = params
        async with self._client() as client:
            response = await client.post(
                self._database_url(database_id, "query"),
                headers=self._headers,
                json=payload,
            )
        self._check_throttled(response)
        if not response.is_success:
            raise UpstreamProtocolError(
                f"Query failed: {response.reason_phrase} - {response.text[:200]}",
                upstream_status=response.status_code,
            )
        body = self._json(response)
        if body.get("success") is False:
            raise UpstreamProtocolError(_first_error(body) or "Query failed")
        results = body.get("result") or []
        if not results:
            return QueryResult()
        first = results[0] or {}
        return QueryResult(rows=first.get("results") or [], meta=first.get("meta") or {})

    async def list_database_ids(self) -> set[str]:
        """Collect every live database id, following the listing cursor."""
        ids: set[str] = set()
        cursor: Optional[str] = None
        url = f"{self._api_base}/accounts/{self._account_id}/d1/database"

        async with self._client() as client:
            while True:
                params = {"per_page": 100}
                if cursor:
                    params["cursor"] = cursor
                response = await client.get(url, headers=self._headers, params=params)
                self._check_throttled(response)
                if not response.is_success:
                    raise UpstreamProtocolError(
                        f"Failed to list databases: {response.reason_phrase}",
                        upstream_status=response.status_code,
                    )
                body = self._json(response)
                for database in body.get("result") or []:
                    if database.get("uuid"):
                        ids.add(database["uuid"])
                cursor = (body.get("result_info") or {}).get("cursor")
                if not cursor:
                    break

        logger.debug("platform_databases_listed", count=len(ids))
        return ids
