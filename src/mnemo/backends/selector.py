"""Backend selection: prefer tool calls, fall back to REST.

The choice is made on every call, so a dispatcher configured late in the
process lifetime takes effect on the next operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mnemo.backends.base import (
    AddResult,
    BackendAdapter,
    GetResult,
    ListResult,
    OperationResult,
    ProfileResponse,
    ReinforcingBackend,
    SearchResult,
)
from mnemo.backends.rest import RESTAdapter
from mnemo.backends.tool_call import ToolCallAdapter, ToolCaller

if TYPE_CHECKING:
    from mnemo.config import MnemoConfig
    from mnemo.scope import ScopeContext

logger = logging.getLogger(__name__)

REINFORCE_UNSUPPORTED = "Reinforce not supported by current backend"


class BackendSelector:
    """Owns one adapter per transport and delegates each call to the active one."""

    def __init__(self, config: MnemoConfig, caller: ToolCaller | None = None) -> None:
        self._config = config
        self.tool_call = ToolCallAdapter(config, caller)
        self._rest: RESTAdapter | None = None
        self._last_name: str | None = None

    @property
    def name(self) -> str:
        return self.current().name

    @property
    def rest(self) -> RESTAdapter:
        """REST transport, built on first use. Also backs temporal fact calls."""
        if self._rest is None:
            self._rest = RESTAdapter(self._config)
        return self._rest

    def set_caller(self, caller: ToolCaller | None) -> None:
        self.tool_call.set_caller(caller)

    def current(self) -> BackendAdapter:
        adapter: BackendAdapter = self.tool_call if self.tool_call.configured else self.rest
        if adapter.name != self._last_name:
            logger.info("Using %s memory backend", adapter.name)
            self._last_name = adapter.name
        return adapter

    def supports_reinforce(self) -> bool:
        return isinstance(self.current(), ReinforcingBackend)

    # ── Delegation ───────────────────────────────────────────

    async def search_memories(self, query: str, scope: ScopeContext, **options: Any) -> SearchResult:
        return await self.current().search_memories(query, scope, **options)

    async def add_memory(self, content: str, scope: ScopeContext, **options: Any) -> AddResult:
        return await self.current().add_memory(content, scope, **options)

    async def list_memories(self, scope: ScopeContext, **options: Any) -> ListResult:
        return await self.current().list_memories(scope, **options)

    async def get_memory(self, memory_id: str, scope: ScopeContext) -> GetResult:
        return await self.current().get_memory(memory_id, scope)

    async def delete_memory(self, memory_id: str, scope: ScopeContext) -> OperationResult:
        return await self.current().delete_memory(memory_id, scope)

    async def reinforce_memory(self, memory_id: str, boost: float = 0.1) -> OperationResult:
        adapter = self.current()
        if not isinstance(adapter, ReinforcingBackend):
            return OperationResult(success=False, error=REINFORCE_UNSUPPORTED)
        return await adapter.reinforce_memory(memory_id, boost)

    async def get_profile(self, scope: ScopeContext, query: str | None = None) -> ProfileResponse:
        return await self.current().get_profile(scope, query)
