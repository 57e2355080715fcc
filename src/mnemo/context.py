"""Render retrieved memories into the context block injected on a session's first turn."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mnemo.backends.base import MemoryItem
    from mnemo.config import MnemoConfig
    from mnemo.profile import ProfileResult

CONTEXT_MARKER = "[OPENMEMORY]"


def percent(value: float | None) -> int | None:
    """Whole percent, halves rounded up (0.125 -> 13)."""
    return None if value is None else math.floor(value * 100 + 0.5)


def _annotation(mem: MemoryItem) -> str:
    """[NN%] for relevance, [sal:NN%] for salience, nothing if neither is known."""
    score = percent(mem.score)
    if score is not None:
        return f"[{score}%]"
    salience = percent(mem.salience)
    if salience is not None:
        return f"[sal:{salience}%]"
    return ""


def format_context(
    profile: ProfileResult | None,
    user_memories: list[MemoryItem],
    project_memories: list[MemoryItem],
    config: MnemoConfig,
) -> str:
    """Build the context block. Returns "" when there is nothing to inject."""
    parts = [CONTEXT_MARKER]

    if config.inject_profile and profile is not None:
        cap = config.max_profile_items
        if profile.static:
            parts.append("\nUser Profile:")
            parts.extend(f"- {fact}" for fact in profile.static[:cap])
        if profile.dynamic:
            parts.append("\nRecent Context:")
            parts.extend(f"- {fact}" for fact in profile.dynamic[:cap])

    if project_memories:
        parts.append("\nProject Knowledge:")
        for mem in project_memories:
            note = _annotation(mem)
            parts.append(f"- {note} {mem.content}" if note else f"- {mem.content}")

    if user_memories:
        parts.append("\nRelevant Memories:")
        for mem in user_memories:
            parts.append(f"- [{mem.sector}]{_annotation(mem)} {mem.content}")

    if len(parts) == 1:
        return ""
    return "\n".join(parts)
