"""Profile partitioning: stable ("static") vs recent ("dynamic") facts.

Two heuristics exist, one per backend variant. They are kept separate on
purpose; whether they approximate the same notion is unresolved.

- Age: created more than STATIC_AGE ago → static. Unknown age → dynamic.
- Salience: salience >= STATIC_SALIENCE → static. Dynamic items are
  re-ranked by most recently seen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mnemo.backends.base import MemoryItem

STATIC_AGE = timedelta(days=7)
STATIC_SALIENCE = 0.7

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ProfileResult:
    static: list[str] = field(default_factory=list)
    dynamic: list[str] = field(default_factory=list)


def partition_by_age(
    items: list[MemoryItem], cap: int, now: datetime | None = None
) -> ProfileResult:
    now = now or datetime.now(timezone.utc)
    boundary = now - STATIC_AGE
    static: list[str] = []
    dynamic: list[str] = []
    for item in items:
        if item.created_at is not None and item.created_at < boundary:
            static.append(item.content)
        else:
            dynamic.append(item.content)
    return ProfileResult(static=static[:cap], dynamic=dynamic[:cap])


def partition_by_salience(items: list[MemoryItem], cap: int) -> ProfileResult:
    static = [m for m in items if m.salience is not None and m.salience >= STATIC_SALIENCE]
    rest = [m for m in items if m.salience is None or m.salience < STATIC_SALIENCE]
    rest.sort(key=lambda m: m.last_seen_at or _EPOCH, reverse=True)
    return ProfileResult(
        static=[m.content for m in static[:cap]],
        dynamic=[m.content for m in rest[:cap]],
    )
