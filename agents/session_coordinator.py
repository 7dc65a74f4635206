"""Session coordinator: every exchange between an agent and the completion provider.

Two operations:

- :meth:`SessionCoordinator.submit_turn`: one user turn and its model reply,
  appended to the agent's conversation.  A brand-new conversation is first
  primed with the assistant persona when participants are known.
- :meth:`SessionCoordinator.initialize_study_session`: single-flight
  startup of a topic: lesson plus quiz are generated exactly once even when
  several members open the topic at the same moment.

Single-flight initialization uses two signals:

1. a conditional, expiring *claim* in the study chat store
   (``SET NX EX`` on Redis), which picks exactly one initializer;
2. a persisted sentinel first message (``# Initializing study materials...``)
   that other readers observe and poll on.

A caller that finds initialization in progress polls the chat until it has
real content, or gives up with :class:`ConflictError` (HTTP 409).  A
sentinel older than ``study_init_stale_seconds`` is treated as abandoned.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Sequence

from pydantic import BaseModel

from agents.quiz_engine import generate_quiz
from config.llm_config import LLMConfig
from config.prompts.assistant import (
    build_lesson_request,
    build_persona_prompt,
    build_study_context,
)
from config.settings import Settings, get_settings
from errors import ConflictError, InputValidationError, ProviderError
from models.base import now
from models.conversation import Part, parse_agent_id, study_agent_id
from models.study import SENTINEL_CONTENT, StudyMessage, StudySessionChat
from services.blob_store import BlobStore, get_blob_store
from services.completion_provider import CompletionProvider, get_completion_provider
from services.conversation_store import (
    ConversationStore,
    format_history_for_provider,
    get_conversation_store,
)
from services.group_store import GroupStore, get_group_store
from services.multimodal import normalize_parts, offload_inline_payloads, prefix_sender
from services.study_chat_store import StudyChatStore, get_study_chat_store

logger = logging.getLogger(__name__)


class _AgentLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class SessionInitialization(BaseModel):
    chat: StudySessionChat
    already_initialized: bool = False


class SessionCoordinator:
    """Mediates all agent ↔ completion-provider interaction."""

    def __init__(
        self,
        conversation_store: ConversationStore | None = None,
        study_chat_store: StudyChatStore | None = None,
        group_store: GroupStore | None = None,
        blob_store: BlobStore | None = None,
        provider: CompletionProvider | None = None,
        settings: Settings | None = None,
    ):
        self.conversations = conversation_store or get_conversation_store()
        self.study_chats = study_chat_store or get_study_chat_store()
        self.groups = group_store or get_group_store()
        self.blobs = blob_store or get_blob_store()
        self.provider = provider or get_completion_provider()
        self.settings = settings or get_settings()
        # One lock per agent keeps user/model turns strictly alternating.
        # Entries live only while a turn holds or waits on them.
        self._agent_locks: dict[str, _AgentLock] = {}

    @asynccontextmanager
    async def _agent_lock(self, agent_id: str):
        entry = self._agent_locks.get(agent_id)
        if entry is None:
            entry = self._agent_locks[agent_id] = _AgentLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._agent_locks[agent_id]

    # ── Turn submission ──────────────────────────────────────

    async def submit_turn(
        self,
        agent_id: str,
        participants: Sequence[str] | None,
        sender_name: str | None,
        text_prompt: str | None,
        multimodal_parts: Sequence[Part | None] | None = None,
        options: LLMConfig | None = None,
    ) -> str:
        """Send one user turn to *agent_id* and return the model's reply.

        Args:
            agent_id: ``group_<gid>``, ``study_<gid>`` or ``study_<gid>_<topic>``.
            participants: Display names used to prime a brand-new conversation.
                ``None`` skips priming.
            sender_name: Prefixed to the first text part as ``"<name>: "``.
            text_prompt: Plain text content, used when no parts are given.
            multimodal_parts: Text / inline-data parts of the turn.
            options: Per-call provider overrides.

        Raises:
            InputValidationError: Unknown agent id scope.
            ProviderError: The provider failed; nothing is appended.
        """
        try:
            scope_type, scope_id = parse_agent_id(agent_id)
        except ValueError as exc:
            raise InputValidationError(str(exc)) from exc

        async with self._agent_lock(agent_id):
            conversation = await self.conversations.get_or_create(
                agent_id, scope_type, scope_id, list(participants or [])
            )
            if not conversation.history and participants:
                await self._prime(conversation, participants)

            if multimodal_parts:
                usable = [p for p in multimodal_parts if p is not None and p.is_usable]
                stored_parts = await offload_inline_payloads(usable, self.blobs)
            else:
                stored_parts = [Part.from_text(text_prompt or "")]
            stored_parts = prefix_sender(stored_parts, sender_name)
            outgoing = await normalize_parts(stored_parts, self.blobs)

            history = await format_history_for_provider(conversation, self.blobs)
            result = await self.provider.generate(history, outgoing, options)

            await self.conversations.append_turn(conversation, "user", stored_parts or outgoing)
            await self.conversations.append_turn(
                conversation, "model", [Part.from_text(result.text)]
            )

        logger.info(
            "Turn completed: agent=%s sender=%s turns=%d",
            agent_id, sender_name or "-", len(conversation.history),
        )
        return result.text

    async def _prime(self, conversation, participants: Sequence[str]) -> None:
        """Seed a fresh conversation with the assistant persona."""
        prompt = [Part.from_text(build_persona_prompt(participants))]
        result = await self.provider.generate([], prompt)
        await self.conversations.append_turn(conversation, "user", prompt)
        await self.conversations.append_turn(conversation, "model", [Part.from_text(result.text)])
        logger.info("Primed conversation %s for %d participant(s)", conversation.agent_id, len(participants))

    async def load_source_parts(self, group_id: str, limit: int) -> list[Part]:
        """Oldest *limit* study materials of a group as inline-data references."""
        group = await self.groups.get_group(group_id)
        if group is None:
            return []
        return [
            Part.from_bytes_ref(material.file_id, material.content_type)
            for material in group.oldest_materials(limit)
        ]

    # ── Study session initialization ─────────────────────────

    async def initialize_study_session(
        self,
        group_id: str,
        topic: str,
        member_names: Sequence[str],
        max_source_documents: int | None = None,
    ) -> SessionInitialization:
        """Generate the lesson and quiz of a topic exactly once.

        Raises:
            ConflictError: Another request is initializing and did not
                finish within the polling window.
            ProviderError: Lesson generation failed (this caller was the
                initializer).
        """
        limit = (
            max_source_documents
            if max_source_documents is not None
            else self.settings.max_source_documents
        )

        chat = await self.study_chats.get(group_id, topic)
        if chat is not None and chat.has_content:
            return SessionInitialization(chat=chat, already_initialized=True)
        if chat is not None and chat.is_initializing and not self._is_stale(chat):
            logger.info("Initialization of %s/%s in progress, waiting", group_id, topic)
            return await self._await_initializer(group_id, topic)

        ttl = self.settings.study_init_stale_seconds
        if not await self.study_chats.claim_initialization(group_id, topic, ttl):
            logger.info("Lost initialization claim for %s/%s, waiting", group_id, topic)
            return await self._await_initializer(group_id, topic)

        try:
            # The previous holder may have finished between our read and the claim.
            chat = await self.study_chats.get(group_id, topic)
            if chat is not None and chat.has_content:
                return SessionInitialization(chat=chat, already_initialized=True)
            chat = await self._run_initialization(group_id, topic, member_names, limit)
        finally:
            await self.study_chats.release_initialization(group_id, topic)
        return SessionInitialization(chat=chat, already_initialized=False)

    def _is_stale(self, chat: StudySessionChat) -> bool:
        return now() - chat.messages[0].timestamp > self.settings.study_init_stale_seconds

    async def _await_initializer(self, group_id: str, topic: str) -> SessionInitialization:
        attempts = self.settings.study_init_poll_attempts
        for _ in range(attempts):
            await asyncio.sleep(self.settings.study_init_poll_interval)
            chat = await self.study_chats.get(group_id, topic)
            if chat is not None and chat.has_content:
                return SessionInitialization(chat=chat, already_initialized=True)
        logger.warning("Initialization of %s/%s still running after %d polls", group_id, topic, attempts)
        raise ConflictError(
            f"Study session '{topic}' is being initialized by another request; retry later"
        )

    async def _run_initialization(
        self,
        group_id: str,
        topic: str,
        member_names: Sequence[str],
        limit: int,
    ) -> StudySessionChat:
        chat = await self.study_chats.get_or_new(group_id, topic)
        chat.ai_context = build_study_context(topic, member_names)
        chat.messages = [StudyMessage.from_assistant(SENTINEL_CONTENT)]
        chat.quiz = None
        # Must be durable before the provider call so other readers poll.
        await self.study_chats.save(chat)

        agent_id = study_agent_id(group_id, topic)
        prompt = build_lesson_request(chat.ai_context, topic)
        sources = await self.load_source_parts(group_id, limit)
        lesson = await self.submit_turn(
            agent_id, None, None, prompt, [Part.from_text(prompt), *sources]
        )

        # Re-read before each write: members may have posted since the sentinel save.
        chat = await self.study_chats.get_or_new(group_id, topic)
        lesson_message = StudyMessage.from_assistant(lesson)
        if chat.is_initializing:
            chat.messages[0] = lesson_message
        else:
            chat.messages.insert(0, lesson_message)
        await self.study_chats.save(chat)
        logger.info("Lesson ready for %s/%s (%d source document(s))", group_id, topic, len(sources))

        try:
            quiz = await generate_quiz(self, agent_id, topic)
        except ProviderError as exc:
            logger.warning("Quiz generation failed for %s/%s, keeping lesson only: %s", group_id, topic, exc)
            return chat

        chat = await self.study_chats.get_or_new(group_id, topic)
        chat.quiz = quiz
        await self.study_chats.save(chat)
        return chat


# ── Module-level Singleton ───────────────────────────────────

_coordinator: SessionCoordinator | None = None


def get_session_coordinator() -> SessionCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = SessionCoordinator()
    return _coordinator


def reset_session_coordinator() -> None:
    global _coordinator
    _coordinator = None
