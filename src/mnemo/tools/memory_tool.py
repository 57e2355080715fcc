"""The ``openmemory`` agent tool: one entry point, dispatched on ``mode``.

Every call returns a flat JSON string, ``{"success": true, ...}`` or
``{"success": false, "error": "..."}``. Arguments are validated before any
backend call is made.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from mnemo.backends.base import MEMORY_TYPES, SECTORS
from mnemo.context import percent
from mnemo.privacy import check_content

if TYPE_CHECKING:
    from mnemo.backends.base import MemoryItem
    from mnemo.backends.selector import BackendSelector
    from mnemo.scope import ScopeContext, Scopes

logger = logging.getLogger(__name__)

MODES = ("add", "search", "profile", "list", "forget", "reinforce", "help")
SCOPE_NAMES = ("user", "project")
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_LIST_LIMIT = 20
DEFAULT_BOOST = 0.1

TOOL_DESCRIPTION = (
    "Manage and query the OpenMemory persistent memory system. Use 'search' to find "
    "relevant memories, 'add' to store new knowledge, 'profile' to view user profile, "
    "'list' to see recent memories, 'forget' to remove a memory, 'reinforce' to boost "
    "memory importance."
)

HELP = {
    "success": True,
    "message": "OpenMemory Usage Guide",
    "commands": [
        {"command": "add", "description": "Store a new memory", "args": ["content", "type?", "scope?", "sector?"]},
        {"command": "search", "description": "Search memories", "args": ["query", "scope?", "sector?", "limit?"]},
        {"command": "profile", "description": "View user profile", "args": ["query?"]},
        {"command": "list", "description": "List recent memories", "args": ["scope?", "sector?", "limit?"]},
        {"command": "forget", "description": "Remove a memory", "args": ["memory_id", "scope?"]},
        {"command": "reinforce", "description": "Boost memory importance", "args": ["memory_id", "boost?"]},
    ],
    "scopes": {
        "user": "Cross-project preferences and knowledge",
        "project": "Project-specific knowledge (default)",
    },
    "sectors": {
        "episodic": "Events, experiences, temporal sequences",
        "semantic": "Facts, concepts, general knowledge (default)",
        "procedural": "Skills, how-to knowledge, processes",
        "emotional": "Feelings, sentiments, reactions",
        "reflective": "Meta-cognition, insights, patterns",
    },
    "types": list(MEMORY_TYPES),
}


class ValidationError(ValueError):
    """Bad or missing tool arguments."""


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def _fail(error: str) -> str:
    return _dump({"success": False, "error": error})


def _search_row(mem: MemoryItem, scope: str | None = None) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": mem.id,
        "content": mem.content,
        "score": percent(mem.score),
        "salience": percent(mem.salience),
        "sector": mem.sector,
    }
    if scope:
        row["scope"] = scope
    return row


def _check_choice(name: str, value: str | None, choices: tuple[str, ...]) -> None:
    if value is not None and value not in choices:
        raise ValidationError(f"{name} must be one of: {', '.join(choices)}")


class CommandRouter:
    """Maps tool modes to backend operations."""

    def __init__(self, backend: BackendSelector, scopes: Scopes) -> None:
        self._backend = backend
        self._scopes = scopes
        self._handlers = {
            "help": self._help,
            "add": self._add,
            "search": self._search,
            "profile": self._profile,
            "list": self._list,
            "forget": self._forget,
            "reinforce": self._reinforce,
        }

    def _scope(self, name: str | None) -> ScopeContext:
        return self._scopes.user if name == "user" else self._scopes.project

    async def execute(
        self,
        mode: str | None = None,
        *,
        content: str | None = None,
        query: str | None = None,
        type: str | None = None,
        scope: str | None = None,
        sector: str | None = None,
        memory_id: str | None = None,
        limit: int | None = None,
        boost: float | None = None,
    ) -> str:
        mode = mode or "help"
        handler = self._handlers.get(mode)
        if handler is None:
            return _fail(f"Unknown mode: {mode}")

        args = {
            "content": content,
            "query": query,
            "type": type,
            "scope": scope,
            "sector": sector,
            "memory_id": memory_id,
            "limit": limit,
            "boost": boost,
        }
        try:
            _check_choice("scope", scope, SCOPE_NAMES)
            _check_choice("sector", sector, SECTORS)
            _check_choice("type", type, MEMORY_TYPES)
            return await handler(**args)
        except ValidationError as e:
            return _fail(str(e))
        except Exception as e:
            logger.exception("openmemory %s failed", mode)
            return _fail(str(e))

    # ── Modes ────────────────────────────────────────────────

    async def _help(self, **_: Any) -> str:
        return _dump(HELP)

    async def _add(self, *, content, type, scope, sector, **_: Any) -> str:
        if not content or not content.strip():
            raise ValidationError("content parameter is required for add mode")

        gate = check_content(content)
        if not gate.allowed:
            return _fail(gate.error)
        if gate.redacted:
            logger.info("Redacted %d private span(s) before storing", gate.redacted)

        scope_name = scope or "project"
        result = await self._backend.add_memory(
            gate.content,
            self._scope(scope_name),
            type=type,
            tags=[sector] if sector else None,
        )
        if not result.success:
            return _fail(result.error or "Failed to add memory")

        return _dump(
            {
                "success": True,
                "message": f"Memory added to {scope_name} scope",
                "id": result.id,
                "scope": scope_name,
                "sector": result.sector,
                "type": type,
            }
        )

    async def _search(self, *, query, scope, sector, limit, **_: Any) -> str:
        if not query:
            raise ValidationError("query parameter is required for search mode")
        limit = limit or DEFAULT_SEARCH_LIMIT

        if scope:
            result = await self._backend.search_memories(
                query, self._scope(scope), limit=limit, sector=sector
            )
            if not result.success:
                return _fail(result.error or "Failed to search memories")
            return _dump(
                {
                    "success": True,
                    "query": query,
                    "scope": scope,
                    "count": len(result.results),
                    "results": [_search_row(m) for m in result.results[:limit]],
                }
            )

        user_res, project_res = await asyncio.gather(
            self._backend.search_memories(query, self._scopes.user, limit=limit, sector=sector),
            self._backend.search_memories(query, self._scopes.project, limit=limit, sector=sector),
        )
        # Half a ranking would be misleading, so either failure fails the search
        if not user_res.success or not project_res.success:
            return _fail(user_res.error or project_res.error or "Failed to search memories")

        combined = [(m, "user") for m in user_res.results] + [
            (m, "project") for m in project_res.results
        ]
        combined.sort(key=lambda pair: pair[0].score or 0, reverse=True)
        return _dump(
            {
                "success": True,
                "query": query,
                "count": len(combined),
                "results": [_search_row(m, s) for m, s in combined[:limit]],
            }
        )

    async def _profile(self, *, query, **_: Any) -> str:
        result = await self._backend.get_profile(self._scopes.user, query)
        if not result.success:
            return _fail(result.error or "Failed to fetch profile")
        profile = result.profile
        return _dump(
            {
                "success": True,
                "profile": {
                    "static": profile.static if profile else [],
                    "dynamic": profile.dynamic if profile else [],
                },
            }
        )

    async def _list(self, *, scope, sector, limit, **_: Any) -> str:
        scope_name = scope or "project"
        result = await self._backend.list_memories(
            self._scope(scope_name), limit=limit or DEFAULT_LIST_LIMIT, sector=sector
        )
        if not result.success:
            return _fail(result.error or "Failed to list memories")

        return _dump(
            {
                "success": True,
                "scope": scope_name,
                "count": len(result.memories),
                "memories": [
                    {
                        "id": m.id,
                        "content": m.content,
                        "sector": m.sector,
                        "salience": percent(m.salience),
                        "tags": m.tags,
                        "createdAt": m.created_at.isoformat() if m.created_at else None,
                    }
                    for m in result.memories
                ],
            }
        )

    async def _forget(self, *, memory_id, scope, **_: Any) -> str:
        if not memory_id:
            raise ValidationError("memory_id parameter is required for forget mode")
        scope_name = scope or "project"
        result = await self._backend.delete_memory(memory_id, self._scope(scope_name))
        if not result.success:
            return _fail(result.error or "Failed to delete memory")
        return _dump(
            {"success": True, "message": f"Memory {memory_id} removed from {scope_name} scope"}
        )

    async def _reinforce(self, *, memory_id, boost, **_: Any) -> str:
        if not memory_id:
            raise ValidationError("memory_id parameter is required for reinforce mode")
        boost = DEFAULT_BOOST if boost is None else boost
        result = await self._backend.reinforce_memory(memory_id, boost)
        if not result.success:
            return _fail(result.error or "Failed to reinforce memory")
        return _dump({"success": True, "message": f"Memory {memory_id} reinforced by {boost}"})
