"""REST backend — JSON over HTTP against an OpenMemory server via aiohttp."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiohttp

from mnemo.backends.base import (
    DEFAULT_PROFILE_QUERY,
    WRITE_SOURCE,
    AddResult,
    BackendError,
    GetResult,
    ListResult,
    MemoryItem,
    OperationResult,
    ProfileResponse,
    SearchResult,
    content_of,
    to_datetime,
    to_float,
)
from mnemo.profile import partition_by_age
from mnemo.scope import ScopeContext, scope_key

if TYPE_CHECKING:
    from mnemo.config import MnemoConfig

logger = logging.getLogger(__name__)


class HTTPStatusError(BackendError):
    """Non-2xx response. Message carries the status code and response body."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        self.body = body


def map_rest_memory(raw: dict, default_sector: str) -> MemoryItem:
    """Map a /memory/query match or /memory/all item into a MemoryItem."""
    return MemoryItem(
        id=str(raw.get("id", "")),
        content=content_of(raw),
        score=to_float(raw.get("score")),
        salience=to_float(raw.get("salience")),
        sector=raw.get("primary_sector") or default_sector,
        tags=raw.get("tags"),
        metadata=raw.get("metadata"),
        created_at=to_datetime(raw.get("created_at")),
        updated_at=to_datetime(raw.get("updated_at")),
        last_seen_at=to_datetime(raw.get("last_seen_at")),
    )


class RESTAdapter:
    """OpenMemory HTTP API client.

    Every call opens a short-lived aiohttp session and is raced against a
    fixed timeout; a timeout produces a message distinct from HTTP errors.
    """

    def __init__(self, config: MnemoConfig) -> None:
        self._config = config
        self.base_url = config.api_url.rstrip("/")
        self.api_key = config.api_key
        self.timeout = config.timeout

    @property
    def name(self) -> str:
        return "rest"

    # ── Transport ────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises BackendError (HTTPStatusError for non-2xx). Public so the
        temporal fact client can share this transport.
        """
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}
        try:
            return await asyncio.wait_for(
                self._send(method, path, params, json_body), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise BackendError(f"Timeout after {int(self.timeout * 1000)}ms") from None
        except aiohttp.ClientError as e:
            raise BackendError(f"Connection error: {e}") from e

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None,
        json_body: dict[str, Any] | None,
    ) -> Any:
        async with aiohttp.ClientSession() as session:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                params=params,
                json=json_body,
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise HTTPStatusError(resp.status, await resp.text())
                return await resp.json(content_type=None)

    def _user_id(self, scope: ScopeContext) -> str:
        return scope_key(scope, self._config.scope_prefix)

    # ── Memory operations ────────────────────────────────────

    async def search_memories(
        self,
        query: str,
        scope: ScopeContext,
        *,
        limit: int | None = None,
        min_salience: float | None = None,
        sector: str | None = None,
    ) -> SearchResult:
        logger.debug("rest.search_memories query=%r scope=%s", query[:50], scope.kind)
        user_id = self._user_id(scope)
        filters: dict[str, Any] = {"user_id": user_id}
        if min_salience is not None:
            filters["min_score"] = min_salience
        if sector:
            filters["sector"] = sector

        try:
            data = await self.request(
                "POST",
                "/memory/query",
                json_body={
                    "query": query,
                    "k": limit or self._config.max_memories,
                    "user_id": user_id,
                    "filters": filters,
                },
            )
            memories = [
                map_rest_memory(m, self._config.default_sector)
                for m in (data or {}).get("matches") or []
            ]
        except Exception as e:
            logger.warning("rest.search_memories failed: %s", e)
            return SearchResult(success=False, error=str(e))

        logger.debug("rest.search_memories: %d results", len(memories))
        return SearchResult(success=True, results=memories, total=len(memories))

    async def add_memory(
        self,
        content: str,
        scope: ScopeContext,
        *,
        type: str | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AddResult:
        logger.debug("rest.add_memory len=%d scope=%s", len(content), scope.kind)
        body = {
            "content": content,
            "user_id": self._user_id(scope),
            "tags": tags,
            "metadata": {
                **(metadata or {}),
                "type": type,
                "scope": scope.kind,
                "project_id": scope.project_id,
                "source": WRITE_SOURCE,
            },
        }
        try:
            data = await self.request("POST", "/memory/add", json_body=body) or {}
            memory_id, sector = data.get("id"), data.get("primary_sector")
        except Exception as e:
            logger.warning("rest.add_memory failed: %s", e)
            return AddResult(success=False, error=str(e))

        logger.info("Stored memory %s (%s scope)", memory_id, scope.kind)
        return AddResult(success=True, id=memory_id, sector=sector)

    async def list_memories(
        self,
        scope: ScopeContext,
        *,
        limit: int | None = None,
        offset: int | None = None,
        sector: str | None = None,
    ) -> ListResult:
        logger.debug("rest.list_memories scope=%s limit=%s", scope.kind, limit)
        params = {
            "user_id": self._user_id(scope),
            "l": limit or self._config.max_project_memories,
            "u": offset,
            "sector": sector,
        }
        try:
            data = await self.request("GET", "/memory/all", params=params)
            memories = [
                map_rest_memory(m, self._config.default_sector)
                for m in (data or {}).get("items") or []
            ]
        except Exception as e:
            logger.warning("rest.list_memories failed: %s", e)
            return ListResult(success=False, error=str(e))

        return ListResult(success=True, memories=memories, total=len(memories))

    async def get_memory(self, memory_id: str, scope: ScopeContext) -> GetResult:
        try:
            data = await self.request(
                "GET",
                f"/memory/{quote(memory_id, safe='')}",
                params={"user_id": self._user_id(scope)},
            )
            memory = map_rest_memory(data or {}, self._config.default_sector)
        except Exception as e:
            logger.warning("rest.get_memory %s failed: %s", memory_id, e)
            return GetResult(success=False, error=str(e))
        return GetResult(success=True, memory=memory)

    async def delete_memory(self, memory_id: str, scope: ScopeContext) -> OperationResult:
        try:
            await self.request(
                "DELETE",
                f"/memory/{quote(memory_id, safe='')}",
                params={"user_id": self._user_id(scope)},
            )
        except Exception as e:
            logger.warning("rest.delete_memory %s failed: %s", memory_id, e)
            return OperationResult(success=False, error=str(e))

        logger.info("Deleted memory %s", memory_id)
        return OperationResult(success=True)

    async def reinforce_memory(self, memory_id: str, boost: float = 0.1) -> OperationResult:
        try:
            await self.request("POST", "/memory/reinforce", json_body={"id": memory_id, "boost": boost})
        except Exception as e:
            logger.warning("rest.reinforce_memory %s failed: %s", memory_id, e)
            return OperationResult(success=False, error=str(e))
        return OperationResult(success=True)

    async def get_profile(self, scope: ScopeContext, query: str | None = None) -> ProfileResponse:
        cap = self._config.max_profile_items
        result = await self.search_memories(
            query or DEFAULT_PROFILE_QUERY,
            ScopeContext(user_id=scope.user_id),
            limit=cap * 2,
        )
        if not result.success:
            return ProfileResponse(success=False, error=result.error)

        profile = partition_by_age(result.results, cap)
        logger.debug(
            "rest.get_profile static=%d dynamic=%d", len(profile.static), len(profile.dynamic)
        )
        return ProfileResponse(success=True, profile=profile)
