"""Tool-call backend — OpenMemory exposed as named remote procedures (MCP tools).

The host runtime owns the RPC channel and injects a dispatcher with
``set_caller``. The dispatcher signature is ``async (tool_name, args) -> result``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

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
from mnemo.profile import partition_by_salience
from mnemo.scope import ScopeContext, scope_key

if TYPE_CHECKING:
    from mnemo.config import MnemoConfig

logger = logging.getLogger(__name__)

ToolCaller = Callable[[str, dict[str, Any]], Awaitable[Any]]

TOOL_QUERY = "openmemory_query"
TOOL_STORE = "openmemory_store"
TOOL_LIST = "openmemory_list"
TOOL_GET = "openmemory_get"
TOOL_REINFORCE = "openmemory_reinforce"

NOT_CONFIGURED = "Tool caller not configured. Call set_caller() before using the tool-call backend."
DELETE_UNSUPPORTED = (
    "Delete is not supported by the tool-call backend. "
    "Use reinforce with a negative boost to demote the memory instead."
)


def unwrap_tool_result(result: Any) -> Any:
    """Reduce a tool result to plain JSON data.

    Accepts dicts, JSON strings, and MCP-style ``{"content": [{"type": "text",
    "text": ...}]}`` envelopes.
    """
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        if result.get("isError"):
            raise BackendError(_text_parts(result["content"]) or "tool reported an error")
        result = _text_parts(result["content"])
    if isinstance(result, (bytes, bytearray)):
        result = result.decode()
    if isinstance(result, str):
        text = result.strip()
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            raise BackendError(f"Unparseable tool result: {text[:200]}") from None
    return result


def _text_parts(parts: list) -> str:
    return "\n".join(
        p.get("text", "") for p in parts if isinstance(p, dict) and p.get("type") == "text"
    )


def map_tool_memory(raw: dict, default_sector: str) -> MemoryItem:
    """Map an openmemory_query match or openmemory_list item into a MemoryItem."""
    sectors = raw.get("sectors") or []
    return MemoryItem(
        id=str(raw.get("id", "")),
        content=content_of(raw),
        score=to_float(raw.get("score")),
        salience=to_float(raw.get("salience")),
        sector=raw.get("primary_sector") or (sectors[0] if sectors else default_sector),
        tags=raw.get("tags"),
        metadata=raw.get("metadata"),
        created_at=to_datetime(raw.get("created_at")),
        updated_at=to_datetime(raw.get("updated_at")),
        last_seen_at=to_datetime(raw.get("last_seen_at")),
    )


class ToolCallAdapter:
    """Memory backend reached through host-dispatched tool calls."""

    def __init__(self, config: MnemoConfig, caller: ToolCaller | None = None) -> None:
        self._config = config
        self._caller = caller
        self.timeout = config.timeout

    @property
    def name(self) -> str:
        return "tool_call"

    @property
    def configured(self) -> bool:
        return self._caller is not None

    def set_caller(self, caller: ToolCaller | None) -> None:
        self._caller = caller
        logger.info("Tool caller %s", "configured" if caller else "cleared")

    async def _call(self, tool: str, args: dict[str, Any]) -> Any:
        if self._caller is None:
            raise BackendError(NOT_CONFIGURED)
        args = {k: v for k, v in args.items() if v is not None}
        try:
            result = await asyncio.wait_for(self._caller(tool, args), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise BackendError(f"Timeout after {int(self.timeout * 1000)}ms") from None
        return unwrap_tool_result(result)

    def _user_id(self, scope: ScopeContext) -> str:
        return scope_key(scope, self._config.scope_prefix)

    def _map(self, raw: dict) -> MemoryItem:
        return map_tool_memory(raw, self._config.default_sector)

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
        logger.debug("tool.search_memories query=%r scope=%s", query[:50], scope.kind)
        try:
            data = await self._call(
                TOOL_QUERY,
                {
                    "query": query,
                    "k": limit or self._config.max_memories,
                    "user_id": self._user_id(scope),
                    "min_salience": min_salience,
                    "sector": sector,
                },
            )
            memories = [self._map(m) for m in (data or {}).get("matches") or []]
        except Exception as e:
            logger.warning("tool.search_memories failed: %s", e)
            return SearchResult(success=False, error=str(e))
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
        logger.debug("tool.add_memory len=%d scope=%s", len(content), scope.kind)
        try:
            data = await self._call(
                TOOL_STORE,
                {
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
                },
            ) or {}
            memory_id = data.get("id") or data.get("root_memory_id")
            sector = data.get("primary_sector")
        except Exception as e:
            logger.warning("tool.add_memory failed: %s", e)
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
        try:
            data = await self._call(
                TOOL_LIST,
                {
                    "limit": limit or self._config.max_project_memories,
                    "offset": offset,
                    "user_id": self._user_id(scope),
                    "sector": sector,
                },
            )
            memories = [self._map(m) for m in (data or {}).get("items") or []]
        except Exception as e:
            logger.warning("tool.list_memories failed: %s", e)
            return ListResult(success=False, error=str(e))
        return ListResult(success=True, memories=memories, total=len(memories))

    async def get_memory(self, memory_id: str, scope: ScopeContext) -> GetResult:
        try:
            data = await self._call(TOOL_GET, {"id": memory_id, "user_id": self._user_id(scope)})
            memory = self._map(data) if data else None
        except Exception as e:
            logger.warning("tool.get_memory %s failed: %s", memory_id, e)
            return GetResult(success=False, error=str(e))
        return GetResult(success=True, memory=memory)

    async def delete_memory(self, memory_id: str, scope: ScopeContext) -> OperationResult:
        return OperationResult(success=False, error=DELETE_UNSUPPORTED)

    async def reinforce_memory(self, memory_id: str, boost: float = 0.1) -> OperationResult:
        try:
            await self._call(TOOL_REINFORCE, {"id": memory_id, "boost": boost})
        except Exception as e:
            logger.warning("tool.reinforce_memory %s failed: %s", memory_id, e)
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
        return ProfileResponse(success=True, profile=partition_by_salience(result.results, cap))
