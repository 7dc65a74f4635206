"""Conversation store: persisted, ordered turn history per agent.

Provides an abstract interface with in-memory and Redis implementations.
Creation is insert-if-absent on ``agent_id`` so concurrent first use of
the same agent never produces two conversations.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from errors import StorageError
from models.conversation import Conversation, Part, ScopeType, Turn, TurnRole
from services.blob_store import BlobStore
from services.multimodal import normalize_parts

logger = logging.getLogger(__name__)


# ── Abstract Interface ───────────────────────────────────────


class ConversationStore(ABC):
    """Abstract conversation store: implement for different backends."""

    @abstractmethod
    async def get(self, agent_id: str) -> Conversation | None:
        """Retrieve a conversation by agent ID.  Returns None if not found."""
        ...

    @abstractmethod
    async def save(self, conversation: Conversation) -> None:
        """Persist a conversation (create or update)."""
        ...

    @abstractmethod
    async def delete(self, agent_id: str) -> None:
        ...

    @abstractmethod
    async def _insert_if_absent(self, conversation: Conversation) -> bool:
        """Store *conversation* only if its agent ID is unused.  True if stored."""
        ...

    async def get_or_create(
        self,
        agent_id: str,
        scope_type: ScopeType,
        scope_id: str,
        participants: list[str] | None = None,
    ) -> Conversation:
        """Return the agent's conversation, creating an empty one on first use."""
        existing = await self.get(agent_id)
        if existing is not None:
            return existing

        conversation = Conversation(
            agent_id=agent_id,
            scope_type=scope_type,
            scope_id=scope_id,
            participants=list(dict.fromkeys(participants or [])),
        )
        if await self._insert_if_absent(conversation):
            logger.info("Created conversation %s (%s)", agent_id, scope_type)
            return conversation

        # Lost the creation race; the winner's record is authoritative.
        existing = await self.get(agent_id)
        if existing is None:
            raise StorageError(f"Conversation {agent_id} vanished after insert conflict")
        return existing

    async def append_turn(
        self, conversation: Conversation, role: TurnRole, parts: list[Part]
    ) -> Turn:
        """Append one turn and persist the conversation."""
        turn = conversation.add_turn(role, parts)
        await self.save(conversation)
        return turn


# ── In-Memory Implementation ────────────────────────────────


class InMemoryConversationStore(ConversationStore):
    """Dict-backed store.  Suitable for single-instance deployments."""

    def __init__(self) -> None:
        self._store: dict[str, Conversation] = {}

    async def get(self, agent_id: str) -> Conversation | None:
        return self._store.get(agent_id)

    async def save(self, conversation: Conversation) -> None:
        self._store[conversation.agent_id] = conversation

    async def delete(self, agent_id: str) -> None:
        self._store.pop(agent_id, None)

    async def _insert_if_absent(self, conversation: Conversation) -> bool:
        if conversation.agent_id in self._store:
            return False
        self._store[conversation.agent_id] = conversation
        return True

    @property
    def size(self) -> int:
        return len(self._store)


# ── Redis Implementation ─────────────────────────────────────


class RedisConversationStore(ConversationStore):
    """Redis-backed store; conversations are serialized as JSON.

    ``SET NX`` gives the insert-if-absent guarantee across workers.
    """

    _KEY_PREFIX = "conv:"

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

    def _key(self, agent_id: str) -> str:
        return f"{self._KEY_PREFIX}{agent_id}"

    async def get(self, agent_id: str) -> Conversation | None:
        data = await self._redis.get(self._key(agent_id))
        if data is None:
            return None
        return Conversation.model_validate_json(data)

    async def save(self, conversation: Conversation) -> None:
        await self._redis.set(self._key(conversation.agent_id), conversation.model_dump_json())

    async def delete(self, agent_id: str) -> None:
        await self._redis.delete(self._key(agent_id))

    async def _insert_if_absent(self, conversation: Conversation) -> bool:
        stored = await self._redis.set(
            self._key(conversation.agent_id),
            conversation.model_dump_json(),
            nx=True,
        )
        return bool(stored)

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return await self._redis.ping()
        except Exception:
            return False


# ── Provider-facing history ──────────────────────────────────


async def format_history_for_provider(
    conversation: Conversation, blob_store: BlobStore
) -> list[Turn]:
    """Resolve every turn's parts to provider-ready payloads.

    Text passes through, blob references become base64 payloads, unusable
    parts are dropped, and a turn left with nothing gets one empty text
    part so the provider never sees a partless turn.
    """
    formatted: list[Turn] = []
    for turn in conversation.history:
        parts = await normalize_parts(turn.parts, blob_store)
        formatted.append(Turn(role=turn.role, parts=parts, timestamp=turn.timestamp))
    return formatted


# ── Module-level Singleton ───────────────────────────────────

_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    """Get the singleton conversation store instance."""
    global _store
    if _store is None:
        from config.settings import get_settings

        settings = get_settings()
        if settings.store_type == "redis" and settings.redis_url:
            _store = RedisConversationStore(redis_url=settings.redis_url)
            logger.info("Initialized RedisConversationStore")
        else:
            _store = InMemoryConversationStore()
            logger.info("Initialized InMemoryConversationStore")
    return _store
