"""Shared pytest fixtures.

Provides:
- ``FakeCompletionProvider``: scripted provider that records every call
- ``study_responder``: answers lesson / quiz / outline prompts with valid output
- ``stores`` / ``blob_store`` / ``provider`` / ``coordinator``: fresh per test
- ``hub``: fresh realtime hub
- ``client``: ``AsyncClient`` over the app with the fixtures above installed
- ``FakeRedis``: the subset of ``redis.asyncio`` the stores use
- ``FakeSocket``: records frames sent by the hub
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import time
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from agents import session_coordinator as coordinator_module
from agents.session_coordinator import SessionCoordinator
from config.settings import Settings
from models.conversation import Part, Turn
from services import realtime as realtime_module
from services.blob_store import InMemoryBlobStore
from services.completion_provider import CompletionProvider
from services.conversation_store import InMemoryConversationStore
from services.group_store import InMemoryGroupStore
from services.realtime import RealtimeHub
from services.study_chat_store import InMemoryStudyChatStore

LESSON_TEXT = "# Photosynthesis\n\nPlants turn light into chemical energy."

QUIZ_JSON = json.dumps({
    "questions": [
        {
            "question": f"Question {i}?",
            "options": ["A", "B", "C", "D"],
            "correct": i % 4,
            "explanation": f"Because {i}.",
        }
        for i in range(5)
    ]
})

OUTLINE_JSON = json.dumps({
    "course": "Biology",
    "modules": [{"module": "Cells", "lessons": ["Cell structure", "Mitosis"]}],
})


def parts_text(parts: list[Part]) -> str:
    return "".join(p.text or "" for p in parts)


def study_responder(history: list[Turn], new_parts: list[Part]) -> str:
    text = parts_text(new_parts)
    if "Create a quiz" in text:
        return QUIZ_JSON
    if "course outline" in text:
        return OUTLINE_JSON
    if "Provide a lesson" in text:
        return LESSON_TEXT
    return "Sure, happy to help."


class FakeCompletionProvider(CompletionProvider):
    """Records ``(history, new_parts)`` per call and answers from a script.

    ``responses`` are consumed first (an Exception instance is raised);
    then ``responder(history, new_parts)`` is used; otherwise ``"reply N"``.
    """

    def __init__(self, responses=None, responder=None, delay: float = 0.0, timeout: float = 5.0):
        super().__init__(timeout=timeout)
        self.responses = list(responses or [])
        self.responder = responder
        self.delay = delay
        self.calls: list[tuple[list[Turn], list[Part]]] = []

    async def _complete(self, history, new_parts, config):
        self.calls.append((history, new_parts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            result = self.responses.pop(0)
        elif self.responder is not None:
            result = self.responder(history, new_parts)
        else:
            result = f"reply {len(self.calls)}"
        if isinstance(result, Exception):
            raise result
        return result

    def prompts(self) -> list[str]:
        return [parts_text(parts) for _, parts in self.calls]

    def count(self, needle: str) -> int:
        return sum(1 for p in self.prompts() if needle in p)


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.frames: list[dict] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self, name: str) -> list:
        return [f["data"] for f in self.frames if f["event"] == name]


class FakeRedis:
    """In-memory stand-in for the ``redis.asyncio`` calls the stores make."""

    def __init__(self):
        self.data: dict = {}
        self.expiry: dict[str, float] = {}
        self.closed = False

    def _alive(self, key):
        exp = self.expiry.get(key)
        if exp is not None and exp <= time.time():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def get(self, key):
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key, value, nx=False, ex=None):
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = time.time() + ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.data.pop(key, None) is not None)
            self.expiry.pop(key, None)
        return removed

    async def zadd(self, key, mapping, nx=False):
        zset = self.data.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if nx and member in zset:
                continue
            added += int(member not in zset)
            zset[member] = score
        return added

    async def zrange(self, key, start, end):
        zset = self.data.get(key, {})
        ordered = [m for m, _ in sorted(zset.items(), key=lambda kv: kv[1])]
        return ordered[start:] if end == -1 else ordered[start:end + 1]

    async def sadd(self, key, *members):
        self.data.setdefault(key, set()).update(members)

    async def srem(self, key, *members):
        self.data.get(key, set()).difference_update(members)

    async def smembers(self, key):
        return set(self.data.get(key, set()))

    async def rpush(self, key, *values):
        self.data.setdefault(key, []).extend(values)

    async def lrange(self, key, start, end):
        items = self.data.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def keys(self, pattern="*"):
        return [k for k in self.data if fnmatch.fnmatch(k, pattern)]

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings with a short polling window."""
    return Settings(
        study_init_poll_attempts=5,
        study_init_poll_interval=0.01,
        study_init_stale_seconds=120,
        _env_file=None,
    )


@pytest.fixture
def stores():
    return SimpleNamespace(
        conversations=InMemoryConversationStore(),
        study_chats=InMemoryStudyChatStore(),
        groups=InMemoryGroupStore(),
    )


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def provider() -> FakeCompletionProvider:
    return FakeCompletionProvider(responder=study_responder)


@pytest.fixture
def coordinator(stores, blob_store, provider, settings) -> SessionCoordinator:
    return SessionCoordinator(
        conversation_store=stores.conversations,
        study_chat_store=stores.study_chats,
        group_store=stores.groups,
        blob_store=blob_store,
        provider=provider,
        settings=settings,
    )


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def install(monkeypatch, coordinator, hub):
    """Make the API singletons return the per-test coordinator and hub."""
    monkeypatch.setattr(coordinator_module, "_coordinator", coordinator)
    monkeypatch.setattr(realtime_module, "_hub", hub)
    return coordinator


@pytest.fixture
async def client(install):
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
