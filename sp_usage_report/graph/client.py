"""
Async Graph API client with pagination, keyed $batch dispatch, and safety enforcement.
Every failure of a page or batch call is fatal; nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Sequence

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    GRAPH_TIMEOUT_SECONDS,
    GRAPH_CONNECT_TIMEOUT_SECONDS,
    BATCH_SIZE,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation

logger = logging.getLogger("sp_usage_report.graph")


class GraphAPIError(Exception):
    """Raised when a Graph call fails. status_code is 0 for transport failures."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


OWNERS_SUFFIX = "owners"
ASSIGNMENTS_SUFFIX = "assignments"


def owners_key(entity_id: str) -> str:
    """Batch request id of an entity's owners lookup."""
    return f"{entity_id}_{OWNERS_SUFFIX}"


def assignments_key(entity_id: str) -> str:
    """Batch request id of an entity's app role assignments lookup."""
    return f"{entity_id}_{ASSIGNMENTS_SUFFIX}"


@dataclass(frozen=True)
class BatchRequest:
    """One sub-request of a $batch call, correlated by a caller-chosen id."""
    id: str
    url: str
    method: str = "GET"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "url": self.url if self.url.startswith("/") else f"/{self.url}",
        }


@dataclass(frozen=True)
class BatchResponse:
    """One sub-response of a $batch call."""
    id: str
    status: int
    body: dict
    error: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_dict(cls, resp: dict) -> "BatchResponse":
        status = int(resp.get("status") or 0)
        body = resp.get("body")
        if not isinstance(body, dict):
            body = {}
        error = None
        if status >= 400 or status == 0:
            error = body.get("error") or {"code": str(status), "message": "Unknown"}
        return cls(id=str(resp.get("id")), status=status, body=body, error=error)


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Safety-validated requests (read-only enforcement, $batch bodies included)
      - Automatic pagination with @odata.nextLink
      - Keyed $batch dispatch in groups of at most 20
      - v1.0 and beta endpoint support
    """

    def __init__(self, access_token: str, guardian: SafetyGuardian,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.access_token = access_token
        self.guardian = guardian
        self._transport = transport
        self._request_count = 0
        self._batch_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(GRAPH_TIMEOUT_SECONDS, connect=GRAPH_CONNECT_TIMEOUT_SECONDS),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        endpoint = endpoint.lstrip("/")
        return f"{GRAPH_BASE_URL}/{version}/{endpoint}"

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Items keep page order; nothing is deduplicated.
        """
        items = []
        async for item in self.get_all_pages_stream(endpoint, params, beta):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of a paginated endpoint as an async generator.
        There is no page cap: the loop ends only when no @odata.nextLink is returned.
        """
        url = self._build_url(endpoint, beta=beta)
        pages = 0

        while url:
            self.guardian.validate_request("GET", url)
            data = await self._execute("GET", url, params=params)

            # Graph may send "value": null on an empty page.
            for item in data.get("value") or []:
                yield item

            url = data.get("@odata.nextLink")
            params = None  # nextLink contains all params
            pages += 1
            logger.debug(f"Fetched page {pages} of {endpoint}")

    async def batch(
        self,
        requests: Sequence[BatchRequest],
        batch_size: int = BATCH_SIZE,
        beta: bool = False,
        max_concurrency: int = 1,
    ) -> dict[str, BatchResponse]:
        """
        Execute keyed sub-requests as Graph $batch calls.
        Splits into consecutive groups of at most batch_size (max 20) and
        returns every sub-response keyed by its request id.
        Sub-request errors are captured per id; a failed $batch call raises.
        """
        if not 1 <= batch_size <= BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {BATCH_SIZE}, got {batch_size}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        ids = [r.id for r in requests]
        if len(set(ids)) != len(ids):
            raise ValueError("Batch request ids must be unique")

        groups = [
            list(requests[i:i + batch_size])
            for i in range(0, len(requests), batch_size)
        ]
        results: dict[str, BatchResponse] = {}

        if max_concurrency == 1:
            for n, group in enumerate(groups, start=1):
                results.update(await self._send_batch(group, beta=beta))
                logger.debug(f"Batch {n}/{len(groups)} complete ({len(group)} requests)")
            return results

        semaphore = asyncio.Semaphore(max_concurrency)

        async def run_group(group: list[BatchRequest]) -> dict[str, BatchResponse]:
            async with semaphore:
                return await self._send_batch(group, beta=beta)

        tasks = [asyncio.ensure_future(run_group(g)) for g in groups]
        try:
            for group_result in await asyncio.gather(*tasks):
                results.update(group_result)
        except BaseException:
            for t in tasks:
                t.cancel()
            raise
        return results

    async def _send_batch(
        self,
        group: list[BatchRequest],
        beta: bool = False,
    ) -> dict[str, BatchResponse]:
        """POST one $batch body and map its responses by id."""
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        batch_url = f"{GRAPH_BASE_URL}/{version}/$batch"
        batch_body = {"requests": [r.to_dict() for r in group]}

        self.guardian.validate_request("POST", batch_url, batch_body)
        data = await self._execute("POST", batch_url, json_body=batch_body)
        self._batch_count += 1

        results: dict[str, BatchResponse] = {}
        for raw in data.get("responses", []):
            resp = BatchResponse.from_dict(raw)
            if not resp.ok:
                msg = (resp.error or {}).get("message", "Unknown")
                # 403/404 on owners or assignments are routine; keep them quiet.
                if resp.status in (403, 404):
                    logger.debug(f"Batch sub-request {resp.id} failed ({resp.status}): {msg}")
                else:
                    logger.warning(f"Batch sub-request {resp.id} failed: {resp.status} ({msg})")
            results[resp.id] = resp
        return results

    async def _execute(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute a request and decode its JSON body; any non-200 raises GraphAPIError."""
        try:
            response = await self._execute_raw(
                method, url, params=params, json_body=json_body
            )
        except httpx.HTTPError as e:
            raise GraphAPIError(0, f"{type(e).__name__}: {e}", url) from e
        self._request_count += 1

        if response.status_code == 200:
            if not response.content or not response.content.strip():
                return {"value": []}
            try:
                return response.json()
            except ValueError as e:
                raise GraphAPIError(200, f"Invalid JSON body: {e}", url) from e

        try:
            error_body = response.json() if response.content else {}
        except ValueError:
            error_body = {}
        error_msg = (error_body.get("error") or {}).get("message") or response.text[:200]
        raise GraphAPIError(response.status_code, error_msg, url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "batch_calls": self._batch_count,
        }
