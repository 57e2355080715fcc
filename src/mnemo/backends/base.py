"""Backend protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal, Protocol, get_args, runtime_checkable

if TYPE_CHECKING:
    from mnemo.profile import ProfileResult
    from mnemo.scope import ScopeContext

Sector = Literal["episodic", "semantic", "procedural", "emotional", "reflective"]
MemoryType = Literal[
    "project-config",
    "architecture",
    "error-solution",
    "preference",
    "learned-pattern",
    "conversation",
]

SECTORS: tuple[str, ...] = get_args(Sector)
MEMORY_TYPES: tuple[str, ...] = get_args(MemoryType)

DEFAULT_PROFILE_QUERY = "preferences style workflow"
WRITE_SOURCE = "mnemo"


@dataclass
class MemoryItem:
    """A memory in the normalized shape every backend response is mapped into."""

    id: str
    content: str
    score: float | None = None
    salience: float | None = None
    sector: Sector = "semantic"
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_seen_at: datetime | None = None


@dataclass
class SearchResult:
    success: bool
    results: list[MemoryItem] = field(default_factory=list)
    total: int = 0
    error: str | None = None


@dataclass
class AddResult:
    success: bool
    id: str | None = None
    sector: str | None = None
    error: str | None = None


@dataclass
class ListResult:
    success: bool
    memories: list[MemoryItem] = field(default_factory=list)
    total: int | None = None
    error: str | None = None


@dataclass
class GetResult:
    success: bool
    memory: MemoryItem | None = None
    error: str | None = None


@dataclass
class OperationResult:
    """Envelope for operations that carry no payload (delete, reinforce)."""

    success: bool
    error: str | None = None


@dataclass
class ProfileResponse:
    success: bool
    profile: ProfileResult | None = None
    error: str | None = None


class BackendError(Exception):
    """Raised inside an adapter; always converted to a failure envelope at its boundary."""


# ── Helpers shared by the mapping functions ──────────────────


def to_datetime(value: Any) -> datetime | None:
    """Parse epoch seconds, epoch millis, or ISO-8601 into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_float(value: Any) -> float | None:
    """Missing numbers stay None; they are never coerced to 0."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def content_of(raw: dict) -> str:
    return raw.get("content") or raw.get("content_preview") or ""


# ── Protocols ────────────────────────────────────────────────


@runtime_checkable
class BackendAdapter(Protocol):
    """Protocol that every memory backend transport must implement.

    Implementations never raise for expected failures (configuration,
    transport, timeout); they return an envelope with success=False.
    """

    @property
    def name(self) -> str: ...

    async def search_memories(
        self,
        query: str,
        scope: ScopeContext,
        *,
        limit: int | None = None,
        min_salience: float | None = None,
        sector: Sector | None = None,
    ) -> SearchResult: ...

    async def add_memory(
        self,
        content: str,
        scope: ScopeContext,
        *,
        type: MemoryType | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AddResult: ...

    async def list_memories(
        self,
        scope: ScopeContext,
        *,
        limit: int | None = None,
        offset: int | None = None,
        sector: Sector | None = None,
    ) -> ListResult: ...

    async def get_memory(self, memory_id: str, scope: ScopeContext) -> GetResult: ...

    async def delete_memory(self, memory_id: str, scope: ScopeContext) -> OperationResult: ...

    async def get_profile(self, scope: ScopeContext, query: str | None = None) -> ProfileResponse: ...


@runtime_checkable
class ReinforcingBackend(Protocol):
    """Optional capability: explicit salience boost."""

    async def reinforce_memory(self, memory_id: str, boost: float = 0.1) -> OperationResult: ...
