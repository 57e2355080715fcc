"""Tests for the REST backend against an in-process fake OpenMemory server."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from mnemo.backends.base import BackendAdapter, ReinforcingBackend
from mnemo.backends.rest import RESTAdapter, map_rest_memory
from mnemo.config import MnemoConfig
from mnemo.scope import ScopeContext

USER = ScopeContext(user_id="u1")
PROJECT = ScopeContext(user_id="u1", project_id="p1")


def _epoch(days_ago: float) -> float:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).timestamp()


class TestMapping:
    def test_content_fallback_chain(self):
        assert map_rest_memory({"id": "1", "content": "full"}, "semantic").content == "full"
        assert map_rest_memory({"id": "1", "content_preview": "short"}, "semantic").content == "short"
        assert map_rest_memory({"id": "1"}, "semantic").content == ""

    def test_missing_numbers_stay_none(self):
        item = map_rest_memory({"id": "1", "content": "x"}, "semantic")
        assert item.score is None
        assert item.salience is None

    def test_sector_default(self):
        assert map_rest_memory({"id": "1"}, "episodic").sector == "episodic"
        assert map_rest_memory({"id": "1", "primary_sector": "emotional"}, "semantic").sector == "emotional"

    def test_epoch_seconds_and_millis(self):
        item = map_rest_memory({"id": "1", "created_at": 1_700_000_000, "updated_at": 1_700_000_000_000}, "semantic")
        assert item.created_at == item.updated_at
        assert item.created_at.tzinfo is not None


class TestRESTAdapter:
    def test_satisfies_protocols(self):
        adapter = RESTAdapter(MnemoConfig())
        assert isinstance(adapter, BackendAdapter)
        assert isinstance(adapter, ReinforcingBackend)

    @pytest.mark.asyncio
    async def test_search_routes_by_scope(self, fake_backend, config):
        fake_backend.add("opencode:u1", "user fact", score=0.9, primary_sector="semantic")
        fake_backend.add("opencode:u1:p1", "project fact", score=0.8)

        result = await RESTAdapter(config).search_memories("fact", USER, limit=3, sector="semantic")

        assert result.success
        assert [m.content for m in result.results] == ["user fact"]
        assert result.total == 1
        body = fake_backend.requests[-1]["body"]
        assert body["k"] == 3
        assert body["filters"] == {"user_id": "opencode:u1", "sector": "semantic"}

    @pytest.mark.asyncio
    async def test_search_min_salience_filter(self, fake_backend, config):
        await RESTAdapter(config).search_memories("q", USER, min_salience=0.3)
        assert fake_backend.requests[-1]["body"]["filters"]["min_score"] == 0.3

    @pytest.mark.asyncio
    async def test_bearer_token(self, fake_backend, config):
        await RESTAdapter(replace(config, api_key="k-123")).search_memories("q", USER)
        assert fake_backend.requests[-1]["headers"]["Authorization"] == "Bearer k-123"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, fake_backend, config):
        await RESTAdapter(config).search_memories("q", USER)
        assert "Authorization" not in fake_backend.requests[-1]["headers"]

    @pytest.mark.asyncio
    async def test_add_memory(self, fake_backend, config):
        result = await RESTAdapter(config).add_memory(
            "Run tests with -x", PROJECT, type="preference", tags=["procedural"]
        )
        assert result.success
        assert result.id == "mem-1"
        assert result.sector == "semantic"

        body = fake_backend.requests[-1]["body"]
        assert body["user_id"] == "opencode:u1:p1"
        assert body["tags"] == ["procedural"]
        assert body["metadata"]["scope"] == "project"
        assert body["metadata"]["project_id"] == "p1"
        assert body["metadata"]["type"] == "preference"

    @pytest.mark.asyncio
    async def test_list_memories(self, fake_backend, config):
        fake_backend.add("opencode:u1:p1", "a", salience=0.5, created_at=1_700_000_000)
        fake_backend.add("opencode:u1:p1", "b")

        result = await RESTAdapter(config).list_memories(PROJECT, limit=1, offset=0)

        assert result.success
        assert [m.content for m in result.memories] == ["a"]
        assert result.memories[0].created_at is not None
        assert fake_backend.requests[-1]["query"] == {"user_id": "opencode:u1:p1", "l": "1", "u": "0"}

    @pytest.mark.asyncio
    async def test_get_and_delete(self, fake_backend, config):
        mem = fake_backend.add("opencode:u1:p1", "temp")
        adapter = RESTAdapter(config)

        got = await adapter.get_memory(mem["id"], PROJECT)
        assert got.success and got.memory.content == "temp"

        deleted = await adapter.delete_memory(mem["id"], PROJECT)
        assert deleted.success
        assert fake_backend.memories == []

    @pytest.mark.asyncio
    async def test_delete_missing_reports_status(self, fake_backend, config):
        result = await RESTAdapter(config).delete_memory("nope", PROJECT)
        assert not result.success
        assert result.error == "HTTP 404: not found"

    @pytest.mark.asyncio
    async def test_reinforce(self, fake_backend, config):
        mem = fake_backend.add("opencode:u1", "x", salience=0.5)
        result = await RESTAdapter(config).reinforce_memory(mem["id"], 0.2)
        assert result.success
        assert fake_backend.memories[0]["salience"] == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_http_error_envelope(self, fake_backend, config):
        fake_backend.fail_status = 500
        result = await RESTAdapter(config).search_memories("q", USER)
        assert not result.success
        assert result.results == []
        assert result.error == "HTTP 500: backend exploded"

    @pytest.mark.asyncio
    async def test_timeout_is_distinct(self, fake_backend, config):
        fake_backend.delay = 1.0
        result = await RESTAdapter(replace(config, timeout=0.05)).add_memory("x", USER)
        assert not result.success
        assert result.error == "Timeout after 50ms"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        adapter = RESTAdapter(MnemoConfig(api_url="http://127.0.0.1:1", timeout=2.0))
        result = await adapter.list_memories(USER)
        assert not result.success
        assert result.error

    @pytest.mark.asyncio
    async def test_profile_partitions_by_age(self, fake_backend, config):
        fake_backend.add("opencode:u1", "old habit", created_at=_epoch(8))
        fake_backend.add("opencode:u1", "new habit", created_at=_epoch(1))
        fake_backend.add("opencode:u1:p1", "project only", created_at=_epoch(30))

        result = await RESTAdapter(config).get_profile(PROJECT)

        assert result.success
        assert result.profile.static == ["old habit"]
        assert result.profile.dynamic == ["new habit"]
        body = fake_backend.requests[-1]["body"]
        assert body["user_id"] == "opencode:u1"
        assert body["query"] == "preferences style workflow"
        assert body["k"] == config.max_profile_items * 2

    @pytest.mark.asyncio
    async def test_profile_propagates_failure(self, fake_backend, config):
        fake_backend.fail_status = 503
        result = await RESTAdapter(config).get_profile(USER, "anything")
        assert not result.success
        assert result.profile is None
        assert "503" in result.error


class TestMalformedResponses:
    @pytest.mark.asyncio
    async def test_get_memory_list_body(self, fake_backend, config):
        fake_backend.payloads["/memory/mem-1"] = ["not", "a", "memory"]
        result = await RESTAdapter(config).get_memory("mem-1", PROJECT)
        assert result.success is False
        assert result.memory is None

    @pytest.mark.asyncio
    async def test_add_list_body(self, fake_backend, config):
        fake_backend.payloads["/memory/add"] = ["unexpected"]
        result = await RESTAdapter(config).add_memory("x", USER)
        assert result.success is False

    @pytest.mark.asyncio
    async def test_search_match_not_an_object(self, fake_backend, config):
        fake_backend.payloads["/memory/query"] = {"matches": ["oops"]}
        result = await RESTAdapter(config).search_memories("q", USER)
        assert result.success is False
