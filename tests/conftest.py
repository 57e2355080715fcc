"""Shared fixtures: an in-process fake OpenMemory server and a fake tool dispatcher."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mnemo.config import MnemoConfig
from mnemo.scope import ScopeContext, Scopes


def _parse(ts: str | None) -> datetime | None:
    if not ts:
        return None
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


class FakeOpenMemory:
    """Minimal OpenMemory HTTP API backed by lists, with request recording."""

    def __init__(self) -> None:
        self.memories: list[dict] = []
        self.facts: list[dict] = []
        self.requests: list[dict] = []
        self.delay = 0.0
        self.fail_status: int | None = None
        # path -> JSON body returned instead of the real handler
        self.payloads: dict[str, object] = {}
        # user_ids whose requests fail with 500
        self.failing_user_ids: set[str] = set()
        self._next_id = 1
        self.url = ""

    def add(self, user_id: str, content: str, **fields) -> dict:
        mem = {"id": f"mem-{self._next_id}", "user_id": user_id, "content": content, **fields}
        self._next_id += 1
        self.memories.append(mem)
        return mem

    def add_fact(self, subject, predicate, object, valid_from, valid_to=None, confidence=1.0) -> dict:
        fact = {
            "id": f"fact-{self._next_id}",
            "subject": subject,
            "predicate": predicate,
            "object": object,
            "valid_from": valid_from,
            "valid_to": valid_to,
            "confidence": confidence,
        }
        self._next_id += 1
        self.facts.append(fact)
        return fact

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._middleware])
        app.router.add_post("/memory/query", self._query)
        app.router.add_post("/memory/add", self._add)
        app.router.add_post("/memory/reinforce", self._reinforce)
        app.router.add_get("/memory/all", self._all)
        app.router.add_get("/memory/{id}", self._get)
        app.router.add_delete("/memory/{id}", self._delete)
        app.router.add_post("/api/temporal/fact", self._create_fact)
        app.router.add_get("/api/temporal/fact", self._query_facts)
        app.router.add_get("/api/temporal/fact/current", self._current_fact)
        app.router.add_delete("/api/temporal/fact/{id}", self._invalidate_fact)
        app.router.add_get("/api/temporal/timeline", self._timeline)
        app.router.add_get("/api/temporal/stats", self._stats)
        return app

    @web.middleware
    async def _middleware(self, request, handler):
        body = await request.json() if request.can_read_body else None
        request["body"] = body
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "headers": dict(request.headers),
                "body": body,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_status:
            return web.Response(status=self.fail_status, text="backend exploded")
        user_id = body.get("user_id") if isinstance(body, dict) else request.query.get("user_id")
        if user_id in self.failing_user_ids:
            return web.Response(status=500, text="scope unavailable")
        if request.path in self.payloads:
            return web.json_response(self.payloads[request.path])
        return await handler(request)

    # ── Memories ─────────────────────────────────────────────

    async def _query(self, request):
        body = request["body"]
        matches = [m for m in self.memories if m["user_id"] == body["user_id"]]
        return web.json_response({"query": body["query"], "matches": matches[: body["k"]]})

    async def _add(self, request):
        body = request["body"]
        mem = self.add(body["user_id"], body["content"], tags=body.get("tags"), metadata=body.get("metadata"))
        return web.json_response({"id": mem["id"], "primary_sector": "semantic"})

    async def _all(self, request):
        user_id = request.query["user_id"]
        limit = int(request.query.get("l", 100))
        items = [m for m in self.memories if m["user_id"] == user_id]
        if "sector" in request.query:
            items = [m for m in items if m.get("primary_sector") == request.query["sector"]]
        return web.json_response({"items": items[:limit]})

    async def _get(self, request):
        for m in self.memories:
            if m["id"] == request.match_info["id"]:
                return web.json_response(m)
        return web.Response(status=404, text="not found")

    async def _delete(self, request):
        before = len(self.memories)
        self.memories = [m for m in self.memories if m["id"] != request.match_info["id"]]
        if len(self.memories) == before:
            return web.Response(status=404, text="not found")
        return web.json_response({"ok": True})

    async def _reinforce(self, request):
        body = request["body"]
        for m in self.memories:
            if m["id"] == body["id"]:
                m["salience"] = m.get("salience", 0.5) + body["boost"]
                return web.json_response({"ok": True})
        return web.Response(status=404, text="not found")

    # ── Temporal facts ───────────────────────────────────────

    async def _create_fact(self, request):
        body = request["body"]
        fact = self.add_fact(
            body["subject"],
            body["predicate"],
            body["object"],
            body.get("valid_from") or "2026-01-01T00:00:00+00:00",
            confidence=body.get("confidence", 1.0),
        )
        return web.json_response(fact)

    async def _query_facts(self, request):
        q = request.query
        facts = list(self.facts)
        for key in ("subject", "predicate", "object"):
            if key in q:
                facts = [f for f in facts if f[key] == q[key]]
        if "at" in q:
            at = _parse(q["at"])
            facts = [
                f
                for f in facts
                if _parse(f["valid_from"]) <= at and (not f["valid_to"] or at < _parse(f["valid_to"]))
            ]
        return web.json_response({"facts": facts, "count": len(facts)})

    async def _current_fact(self, request):
        q = request.query
        for f in self.facts:
            if f["subject"] == q["subject"] and f["predicate"] == q["predicate"] and not f["valid_to"]:
                return web.json_response({"fact": f})
        return web.Response(status=404, text="no current fact")

    async def _invalidate_fact(self, request):
        body = request["body"]
        for f in self.facts:
            if f["id"] == request.match_info["id"]:
                f["valid_to"] = body["valid_to"]
                return web.json_response({"id": f["id"], "valid_to": f["valid_to"]})
        return web.Response(status=404, text="not found")

    async def _timeline(self, request):
        q = request.query
        facts = [f for f in self.facts if f["subject"] == q["subject"]]
        if "predicate" in q:
            facts = [f for f in facts if f["predicate"] == q["predicate"]]
        # Newest first, so the client has to sort
        facts.sort(key=lambda f: f["valid_from"], reverse=True)
        return web.json_response({"subject": q["subject"], "timeline": facts, "count": len(facts)})

    async def _stats(self, request):
        active = sum(1 for f in self.facts if not f["valid_to"])
        return web.json_response(
            {
                "active_facts": active,
                "historical_facts": len(self.facts) - active,
                "total_facts": len(self.facts),
            }
        )


class FakeToolCaller:
    """Async dispatcher returning canned results per tool name."""

    def __init__(self, responses: dict | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict]] = []
        self.delay = 0.0

    async def __call__(self, tool: str, args: dict):
        self.calls.append((tool, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(tool, {})
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def scopes() -> Scopes:
    return Scopes(
        user=ScopeContext(user_id="u1"),
        project=ScopeContext(user_id="u1", project_id="p1"),
    )


@pytest_asyncio.fixture
async def fake_backend():
    fake = FakeOpenMemory()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def config(fake_backend: FakeOpenMemory) -> MnemoConfig:
    return MnemoConfig(api_url=fake_backend.url, timeout=2.0)


@pytest.fixture
def tool_caller() -> FakeToolCaller:
    return FakeToolCaller()
