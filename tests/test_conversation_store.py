"""Tests for the conversation store."""

from __future__ import annotations

import asyncio
import base64

import pytest

from models.conversation import (
    Conversation,
    InlineData,
    Part,
    group_agent_id,
    parse_agent_id,
    study_agent_id,
)
from services.blob_store import InMemoryBlobStore
from services.conversation_store import (
    InMemoryConversationStore,
    RedisConversationStore,
    format_history_for_provider,
)
from tests.conftest import FakeRedis


# ── Agent identifiers ────────────────────────────────────────


class TestAgentIds:
    def test_group_agent_id(self):
        assert group_agent_id("g1") == "group_g1"
        assert parse_agent_id("group_g1") == ("group", "g1")

    def test_study_agent_ids(self):
        assert study_agent_id("g1") == "study_g1"
        assert study_agent_id("g1", "Cell biology") == "study_g1_Cell biology"
        assert parse_agent_id("study_g1_Cell biology") == ("study", "g1")
        assert parse_agent_id("study_g1") == ("study", "g1")

    @pytest.mark.parametrize("agent_id", ["chat_g1", "group_", "nonsense"])
    def test_unknown_agent_id(self, agent_id):
        with pytest.raises(ValueError):
            parse_agent_id(agent_id)


# ── InMemoryConversationStore ────────────────────────────────


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_get_or_create_creates_once(self):
        store = InMemoryConversationStore()
        first = await store.get_or_create("group_g1", "group", "g1", ["ana", "ben", "ana"])
        second = await store.get_or_create("group_g1", "group", "g1", ["someone else"])
        assert first is second
        assert first.participants == ["ana", "ben"]
        assert first.history == []
        assert store.size == 1

    @pytest.mark.asyncio
    async def test_concurrent_get_or_create(self):
        store = InMemoryConversationStore()
        results = await asyncio.gather(
            *(store.get_or_create("study_g1_x", "study", "g1") for _ in range(10))
        )
        assert store.size == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_append_turn_updates_last_interaction(self):
        store = InMemoryConversationStore()
        conv = await store.get_or_create("group_g1", "group", "g1")
        before = conv.last_interaction
        turn = await store.append_turn(conv, "user", [Part.from_text("hi")])
        assert conv.history == [turn]
        assert conv.last_interaction >= before
        assert (await store.get("group_g1")).history[0].text == "hi"

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryConversationStore()
        await store.get_or_create("group_g1", "group", "g1")
        await store.delete("group_g1")
        assert await store.get("group_g1") is None


# ── RedisConversationStore ───────────────────────────────────


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        store = RedisConversationStore(client=FakeRedis())
        conv = await store.get_or_create("group_g1", "group", "g1", ["ana"])
        await store.append_turn(conv, "user", [Part.from_text("hello")])
        await store.append_turn(conv, "model", [Part.from_text("hi ana")])

        loaded = await store.get("group_g1")
        assert [t.role for t in loaded.history] == ["user", "model"]
        assert loaded.history[1].text == "hi ana"
        assert loaded.participants == ["ana"]

    @pytest.mark.asyncio
    async def test_lost_insert_race_returns_winner(self):
        redis = FakeRedis()
        store = RedisConversationStore(client=redis)
        winner = Conversation(agent_id="group_g1", scope_type="group", scope_id="g1", participants=["w"])

        original_get = store.get
        calls = {"n": 0}

        async def get_then_race(agent_id):
            calls["n"] += 1
            if calls["n"] == 1:
                # Another worker inserts between our lookup and our insert.
                await redis.set("conv:group_g1", winner.model_dump_json())
                return None
            return await original_get(agent_id)

        store.get = get_then_race
        conv = await store.get_or_create("group_g1", "group", "g1", ["loser"])
        assert conv.participants == ["w"]

    @pytest.mark.asyncio
    async def test_ping_and_close(self):
        redis = FakeRedis()
        store = RedisConversationStore(client=redis)
        assert await store.ping() is True
        await store.close()
        assert redis.closed


# ── format_history_for_provider ──────────────────────────────


class TestFormatHistory:
    @pytest.mark.asyncio
    async def test_resolves_references_and_fills_empty_turns(self):
        blobs = InMemoryBlobStore()
        ref = await blobs.put(b"\x89PNG", content_type="image/png")
        conv = Conversation(agent_id="group_g1", scope_type="group", scope_id="g1")
        conv.add_turn("user", [Part.from_text("look"), Part.from_bytes_ref(ref, "image/png")])
        conv.add_turn("model", [Part(text=""), Part(inline_data=InlineData(mime_type="image/png"))])

        history = await format_history_for_provider(conv, blobs)

        first = history[0].parts
        assert first[0].text == "look"
        assert first[1].inline_data.data == base64.b64encode(b"\x89PNG").decode()
        assert first[1].inline_data.ref is None
        assert [p.text for p in history[1].parts] == [""]

    @pytest.mark.asyncio
    async def test_missing_reference_is_dropped(self):
        blobs = InMemoryBlobStore()
        conv = Conversation(agent_id="group_g1", scope_type="group", scope_id="g1")
        conv.add_turn("user", [Part.from_bytes_ref("missing", "image/png")])
        history = await format_history_for_provider(conv, blobs)
        assert len(history[0].parts) == 1
        assert history[0].parts[0].text == ""
