"""First-turn retrieval: profile, user search and project listing, in parallel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from mnemo.backends.base import ListResult, ProfileResponse, SearchResult

if TYPE_CHECKING:
    from mnemo.backends.base import MemoryItem
    from mnemo.backends.selector import BackendSelector
    from mnemo.config import MnemoConfig
    from mnemo.profile import ProfileResult
    from mnemo.scope import Scopes

logger = logging.getLogger(__name__)


@dataclass
class RetrievedContext:
    """Everything the formatter needs. Failed slots are simply empty."""

    profile: ProfileResult | None = None
    user_memories: list[MemoryItem] = field(default_factory=list)
    project_memories: list[MemoryItem] = field(default_factory=list)


def rank_listing(memories: list[MemoryItem]) -> list[MemoryItem]:
    """Give listed memories a score so they rank like search results.

    Salience stands in for relevance when there is no explicit score.
    """
    return [m if m.score is not None else replace(m, score=m.salience) for m in memories]


class RetrievalOrchestrator:
    def __init__(self, backend: BackendSelector, config: MnemoConfig) -> None:
        self._backend = backend
        self._config = config

    async def gather(self, message: str, scopes: Scopes) -> RetrievedContext:
        cfg = self._config
        profile_res, search_res, list_res = await asyncio.gather(
            self._backend.get_profile(scopes.user, message),
            self._backend.search_memories(
                message, scopes.user, limit=cfg.max_memories, min_salience=cfg.min_salience
            ),
            self._backend.list_memories(scopes.project, limit=cfg.max_project_memories),
            return_exceptions=True,
        )

        profile = _profile_or_none(profile_res)
        user_memories: list[MemoryItem] = []
        if _ok(search_res, "user search"):
            user_memories = [
                m
                for m in search_res.results
                if m.score is None or m.score >= cfg.similarity_threshold
            ]
        project_memories: list[MemoryItem] = []
        if _ok(list_res, "project listing"):
            project_memories = rank_listing(list_res.memories)

        logger.debug(
            "Retrieved profile=%s user=%d project=%d",
            profile is not None,
            len(user_memories),
            len(project_memories),
        )
        return RetrievedContext(
            profile=profile,
            user_memories=user_memories,
            project_memories=project_memories,
        )


def _ok(result: SearchResult | ListResult | ProfileResponse | BaseException, slot: str) -> bool:
    if isinstance(result, BaseException):
        logger.error("Retrieval of %s raised: %s", slot, result)
        return False
    if not result.success:
        logger.warning("Retrieval of %s failed: %s", slot, result.error)
        return False
    return True


def _profile_or_none(result: ProfileResponse | BaseException) -> ProfileResult | None:
    if not _ok(result, "profile"):
        return None
    return result.profile
