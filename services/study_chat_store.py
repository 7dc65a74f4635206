"""Study-session chat store: one record per (group, topic).

Besides plain get/save, the store owns the *initialization claim*: a
short-lived, conditional marker that lets exactly one request become the
initializer of a topic.  The claim expires after ``ttl_seconds`` so a
crashed initializer does not block the topic forever.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from models.study import StudySessionChat

logger = logging.getLogger(__name__)


def _key(group_id: str, topic: str) -> str:
    return f"{group_id}:{topic}"


# ── Abstract Interface ───────────────────────────────────────


class StudyChatStore(ABC):
    """Abstract study chat store: implement for different backends."""

    @abstractmethod
    async def get(self, group_id: str, topic: str) -> StudySessionChat | None:
        ...

    @abstractmethod
    async def save(self, chat: StudySessionChat) -> None:
        ...

    @abstractmethod
    async def list_for_group(self, group_id: str) -> list[StudySessionChat]:
        """All topic chats of a group, ordered by creation time."""
        ...

    @abstractmethod
    async def claim_initialization(self, group_id: str, topic: str, ttl_seconds: int) -> bool:
        """Atomically take the initialization claim.  False if someone holds it."""
        ...

    @abstractmethod
    async def release_initialization(self, group_id: str, topic: str) -> None:
        ...

    async def get_or_new(self, group_id: str, topic: str) -> StudySessionChat:
        """Existing chat or a fresh, unsaved one."""
        chat = await self.get(group_id, topic)
        return chat if chat is not None else StudySessionChat(group_id=group_id, topic=topic)


# ── In-Memory Implementation ────────────────────────────────


class InMemoryStudyChatStore(StudyChatStore):
    def __init__(self) -> None:
        self._chats: dict[str, StudySessionChat] = {}
        self._claims: dict[str, float] = {}  # key → expiry (epoch seconds)

    async def get(self, group_id: str, topic: str) -> StudySessionChat | None:
        chat = self._chats.get(_key(group_id, topic))
        # Hand out copies so callers mutate their own view, as with Redis.
        return chat.model_copy(deep=True) if chat is not None else None

    async def save(self, chat: StudySessionChat) -> None:
        chat.touch()
        self._chats[_key(chat.group_id, chat.topic)] = chat.model_copy(deep=True)

    async def list_for_group(self, group_id: str) -> list[StudySessionChat]:
        chats = [c for c in self._chats.values() if c.group_id == group_id]
        return [c.model_copy(deep=True) for c in sorted(chats, key=lambda c: c.created_at)]

    async def claim_initialization(self, group_id: str, topic: str, ttl_seconds: int) -> bool:
        key = _key(group_id, topic)
        current = time.time()
        expiry = self._claims.get(key)
        if expiry is not None and expiry > current:
            return False
        self._claims[key] = current + ttl_seconds
        return True

    async def release_initialization(self, group_id: str, topic: str) -> None:
        self._claims.pop(_key(group_id, topic), None)


# ── Redis Implementation ─────────────────────────────────────


class RedisStudyChatStore(StudyChatStore):
    """Redis-backed store.

    Chats live under ``studychat:<group>:<topic>``; each group keeps a sorted
    set of its topics; the claim is a ``SET NX EX`` key.
    """

    _CHAT_PREFIX = "studychat:"
    _TOPICS_PREFIX = "studytopics:"
    _CLAIM_PREFIX = "studyinit:"

    def __init__(self, redis_url: str = "", client=None):
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=10,
                socket_timeout=10,
            )
        self._redis = client

    async def get(self, group_id: str, topic: str) -> StudySessionChat | None:
        data = await self._redis.get(self._CHAT_PREFIX + _key(group_id, topic))
        if data is None:
            return None
        return StudySessionChat.model_validate_json(data)

    async def save(self, chat: StudySessionChat) -> None:
        chat.touch()
        await self._redis.set(
            self._CHAT_PREFIX + _key(chat.group_id, chat.topic), chat.model_dump_json()
        )
        await self._redis.zadd(
            self._TOPICS_PREFIX + chat.group_id, {chat.topic: chat.created_at}, nx=True
        )

    async def list_for_group(self, group_id: str) -> list[StudySessionChat]:
        topics = await self._redis.zrange(self._TOPICS_PREFIX + group_id, 0, -1)
        chats: list[StudySessionChat] = []
        for topic in topics:
            chat = await self.get(group_id, topic)
            if chat is not None:
                chats.append(chat)
        return chats

    async def claim_initialization(self, group_id: str, topic: str, ttl_seconds: int) -> bool:
        stored = await self._redis.set(
            self._CLAIM_PREFIX + _key(group_id, topic), "1", nx=True, ex=ttl_seconds
        )
        return bool(stored)

    async def release_initialization(self, group_id: str, topic: str) -> None:
        await self._redis.delete(self._CLAIM_PREFIX + _key(group_id, topic))

    async def close(self) -> None:
        await self._redis.aclose()


# ── Module-level Singleton ───────────────────────────────────

_store: StudyChatStore | None = None


def get_study_chat_store() -> StudyChatStore:
    """Get the singleton study chat store instance."""
    global _store
    if _store is None:
        from config.settings import get_settings

        settings = get_settings()
        if settings.store_type == "redis" and settings.redis_url:
            _store = RedisStudyChatStore(redis_url=settings.redis_url)
            logger.info("Initialized RedisStudyChatStore")
        else:
            _store = InMemoryStudyChatStore()
            logger.info("Initialized InMemoryStudyChatStore")
    return _store
