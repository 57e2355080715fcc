"""Bitemporal facts: subject/predicate/object statements with validity intervals.

Facts are never deleted; invalidation closes ``valid_to``. At most one fact
per (subject, predicate) is open at any moment, but closing the previous
version before creating a new one is the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from mnemo.backends.base import to_datetime, to_float
from mnemo.backends.rest import HTTPStatusError

if TYPE_CHECKING:
    from mnemo.backends.rest import RESTAdapter

logger = logging.getLogger(__name__)

_FACT_PATH = "/api/temporal/fact"


@dataclass
class TemporalFact:
    id: str
    subject: str
    predicate: str
    object: str
    valid_from: datetime
    valid_to: datetime | None = None
    confidence: float = 1.0
    metadata: dict[str, Any] | None = None

    def is_valid_at(self, at: datetime) -> bool:
        return self.valid_from <= at and (self.valid_to is None or at < self.valid_to)


@dataclass
class FactChange:
    before: TemporalFact
    after: TemporalFact


@dataclass
class FactDiff:
    added: list[TemporalFact] = field(default_factory=list)
    removed: list[TemporalFact] = field(default_factory=list)
    changed: list[FactChange] = field(default_factory=list)
    unchanged: list[TemporalFact] = field(default_factory=list)


@dataclass
class FactResult:
    success: bool
    fact: TemporalFact | None = None
    error: str | None = None


@dataclass
class FactsResult:
    success: bool
    facts: list[TemporalFact] = field(default_factory=list)
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.facts)


@dataclass
class CompareResult:
    success: bool
    subject: str = ""
    time1: datetime | None = None
    time2: datetime | None = None
    diff: FactDiff = field(default_factory=FactDiff)
    error: str | None = None


@dataclass
class StatsResult:
    success: bool
    active_facts: int = 0
    historical_facts: int = 0
    total_facts: int = 0
    error: str | None = None


def _iso(value: datetime) -> str:
    """UTC ISO-8601 with a Z suffix (no "+" to survive query strings)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def map_fact(raw: dict, subject: str = "", predicate: str = "") -> TemporalFact:
    """Map a backend fact (or timeline entry) into a TemporalFact."""
    confidence = to_float(raw.get("confidence"))
    return TemporalFact(
        id=str(raw.get("id", "")),
        subject=raw.get("subject") or subject,
        predicate=raw.get("predicate") or predicate,
        object=str(raw.get("object", "")),
        valid_from=to_datetime(raw.get("valid_from")) or datetime.min.replace(tzinfo=timezone.utc),
        valid_to=to_datetime(raw.get("valid_to")),
        confidence=1.0 if confidence is None else confidence,
        metadata=raw.get("metadata"),
    )


def diff_snapshots(before: list[TemporalFact], after: list[TemporalFact]) -> FactDiff:
    """Set-diff two point-in-time snapshots of one subject.

    Facts with the same (predicate, object) in both are unchanged. Of the
    rest, a predicate present on both sides is a change; otherwise the fact
    was added or removed. Diffing a snapshot against itself yields only
    unchanged facts.
    """
    before_keys = {(f.predicate, f.object) for f in before}
    after_keys = {(f.predicate, f.object) for f in after}

    diff = FactDiff()
    diff.unchanged = [f for f in after if (f.predicate, f.object) in before_keys]

    pending: dict[str, list[TemporalFact]] = defaultdict(list)
    for f in before:
        if (f.predicate, f.object) not in after_keys:
            pending[f.predicate].append(f)

    for f in after:
        if (f.predicate, f.object) in before_keys:
            continue
        if pending.get(f.predicate):
            diff.changed.append(FactChange(before=pending[f.predicate].pop(0), after=f))
        else:
            diff.added.append(f)

    diff.removed = [f for facts in pending.values() for f in facts]
    return diff


class TemporalFactClient:
    """Temporal fact operations over the REST transport."""

    def __init__(self, transport: RESTAdapter) -> None:
        self._transport = transport

    async def create_fact(
        self,
        subject: str,
        predicate: str,
        object: str,
        valid_from: datetime | None = None,
        confidence: float = 1.0,
        metadata: dict[str, Any] | None = None,
    ) -> FactResult:
        logger.debug("create_fact %s.%s", subject, predicate)
        body = {
            "subject": subject,
            "predicate": predicate,
            "object": object,
            "valid_from": _iso(valid_from) if valid_from else None,
            "confidence": confidence,
            "metadata": metadata,
        }
        try:
            data = await self._transport.request("POST", _FACT_PATH, json_body=body) or {}
            # Echo fields the backend left out
            raw = {**body, **{k: v for k, v in data.items() if v is not None}}
            raw["valid_from"] = raw["valid_from"] or _iso(_now())
            fact = map_fact(raw)
        except Exception as e:
            logger.warning("create_fact failed: %s", e)
            return FactResult(success=False, error=str(e))
        return FactResult(success=True, fact=fact)

    async def query_facts(
        self,
        subject: str | None = None,
        predicate: str | None = None,
        object: str | None = None,
        at: datetime | None = None,
        min_confidence: float | None = None,
    ) -> FactsResult:
        params = {
            "subject": subject,
            "predicate": predicate,
            "object": object,
            "at": _iso(at) if at else None,
            "min_confidence": min_confidence,
        }
        try:
            data = await self._transport.request("GET", _FACT_PATH, params=params) or {}
            facts = [map_fact(f) for f in data.get("facts") or []]
        except Exception as e:
            logger.warning("query_facts failed: %s", e)
            return FactsResult(success=False, error=str(e))

        if at is not None:
            at = to_datetime(at)
            facts = [f for f in facts if f.is_valid_at(at)]
        if min_confidence is not None:
            facts = [f for f in facts if f.confidence >= min_confidence]
        return FactsResult(success=True, facts=facts)

    async def get_current_fact(self, subject: str, predicate: str) -> FactResult:
        """The open fact for (subject, predicate). None is a success, not an error."""
        try:
            data = await self._transport.request(
                "GET",
                f"{_FACT_PATH}/current",
                params={"subject": subject, "predicate": predicate},
            )
            raw = (data or {}).get("fact")
            fact = map_fact(raw, subject, predicate) if raw else None
        except HTTPStatusError as e:
            if e.status == 404:
                return FactResult(success=True, fact=None)
            logger.warning("get_current_fact failed: %s", e)
            return FactResult(success=False, error=str(e))
        except Exception as e:
            logger.warning("get_current_fact failed: %s", e)
            return FactResult(success=False, error=str(e))
        return FactResult(success=True, fact=fact)

    async def get_timeline(self, subject: str, predicate: str | None = None) -> FactsResult:
        """All versions for a subject (optionally one predicate), oldest first."""
        try:
            data = await self._transport.request(
                "GET",
                "/api/temporal/timeline",
                params={"subject": subject, "predicate": predicate},
            ) or {}
            timeline = [map_fact(f, subject, predicate or "") for f in data.get("timeline") or []]
        except Exception as e:
            logger.warning("get_timeline failed: %s", e)
            return FactsResult(success=False, error=str(e))

        timeline.sort(key=lambda f: f.valid_from)
        return FactsResult(success=True, facts=timeline)

    async def invalidate_fact(self, fact_id: str, valid_to: datetime | None = None) -> FactResult:
        valid_to = valid_to or _now()
        try:
            data = await self._transport.request(
                "DELETE",
                f"{_FACT_PATH}/{quote(fact_id, safe='')}",
                json_body={"valid_to": _iso(valid_to)},
            ) or {}
            fact = map_fact(data) if data.get("subject") else None
        except Exception as e:
            logger.warning("invalidate_fact %s failed: %s", fact_id, e)
            return FactResult(success=False, error=str(e))

        logger.info("Invalidated fact %s at %s", fact_id, _iso(valid_to))
        if fact is not None and fact.valid_to is None:
            fact.valid_to = valid_to
        return FactResult(success=True, fact=fact)

    async def get_stats(self) -> StatsResult:
        try:
            data = await self._transport.request("GET", "/api/temporal/stats") or {}
            return StatsResult(
                success=True,
                active_facts=int(data.get("active_facts", 0)),
                historical_facts=int(data.get("historical_facts", 0)),
                total_facts=int(data.get("total_facts", 0)),
            )
        except Exception as e:
            logger.warning("get_stats failed: %s", e)
            return StatsResult(success=False, error=str(e))

    async def compare_facts(self, subject: str, time1: datetime, time2: datetime) -> CompareResult:
        """Diff what was true about ``subject`` at ``time1`` against ``time2``."""
        if time1 == time2:
            snapshot = await self.query_facts(subject=subject, at=time1)
            first = second = snapshot
        else:
            first, second = await asyncio.gather(
                self.query_facts(subject=subject, at=time1),
                self.query_facts(subject=subject, at=time2),
            )

        for snapshot in (first, second):
            if not snapshot.success:
                return CompareResult(success=False, subject=subject, error=snapshot.error)

        return CompareResult(
            success=True,
            subject=subject,
            time1=time1,
            time2=time2,
            diff=diff_snapshots(first.facts, second.facts),
        )
