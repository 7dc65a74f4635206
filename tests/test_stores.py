"""Tests for the study chat store and the group store."""

from __future__ import annotations

import pytest

from errors import InputValidationError, NotFoundError
from models.group import Group, GroupMessage, User
from models.study import StudyMessage, StudySessionChat
from services.group_store import InMemoryGroupStore, RedisGroupStore
from services.study_chat_store import InMemoryStudyChatStore, RedisStudyChatStore
from tests.conftest import FakeRedis


@pytest.fixture(params=["memory", "redis"])
def chat_store(request):
    if request.param == "memory":
        return InMemoryStudyChatStore()
    return RedisStudyChatStore(client=FakeRedis())


@pytest.fixture(params=["memory", "redis"])
def group_store(request):
    if request.param == "memory":
        return InMemoryGroupStore()
    return RedisGroupStore(client=FakeRedis())


# ── StudyChatStore ───────────────────────────────────────────


class TestStudyChatStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self, chat_store):
        chat = StudySessionChat(group_id="g1", topic="Cells")
        chat.messages.append(StudyMessage.from_user("u1", "hi"))
        chat.messages.append(StudyMessage.from_assistant("hello"))
        await chat_store.save(chat)

        loaded = await chat_store.get("g1", "Cells")
        assert [m.role for m in loaded.messages] == ["user", "assistant"]
        assert loaded.messages[0].sender_id == "u1"
        assert loaded.messages[1].sender_id is None
        assert await chat_store.get("g1", "Genes") is None

    @pytest.mark.asyncio
    async def test_get_returns_independent_copy(self, chat_store):
        await chat_store.save(StudySessionChat(group_id="g1", topic="Cells"))
        loaded = await chat_store.get("g1", "Cells")
        loaded.messages.append(StudyMessage.from_assistant("unsaved"))
        assert (await chat_store.get("g1", "Cells")).messages == []

    @pytest.mark.asyncio
    async def test_list_for_group(self, chat_store):
        await chat_store.save(StudySessionChat(group_id="g1", topic="Cells", created_at=1.0))
        await chat_store.save(StudySessionChat(group_id="g1", topic="Genes", created_at=2.0))
        await chat_store.save(StudySessionChat(group_id="g2", topic="Cells", created_at=3.0))

        topics = [c.topic for c in await chat_store.list_for_group("g1")]
        assert topics == ["Cells", "Genes"]

    @pytest.mark.asyncio
    async def test_claim_is_exclusive_until_released(self, chat_store):
        assert await chat_store.claim_initialization("g1", "Cells", 60) is True
        assert await chat_store.claim_initialization("g1", "Cells", 60) is False
        assert await chat_store.claim_initialization("g1", "Genes", 60) is True
        await chat_store.release_initialization("g1", "Cells")
        assert await chat_store.claim_initialization("g1", "Cells", 60) is True

    @pytest.mark.asyncio
    async def test_expired_claim_can_be_retaken(self, chat_store):
        assert await chat_store.claim_initialization("g1", "Cells", 0) is True
        assert await chat_store.claim_initialization("g1", "Cells", 60) is True

    @pytest.mark.asyncio
    async def test_get_or_new_does_not_persist(self, chat_store):
        chat = await chat_store.get_or_new("g1", "Cells")
        assert chat.messages == []
        assert await chat_store.get("g1", "Cells") is None


class TestSentinel:
    def test_sentinel_detection(self):
        chat = StudySessionChat(
            group_id="g1",
            topic="Cells",
            messages=[StudyMessage.from_assistant("# Initializing study materials...")],
        )
        assert chat.is_initializing
        assert not chat.has_content

    def test_user_message_is_not_sentinel(self):
        chat = StudySessionChat(
            group_id="g1",
            topic="Cells",
            messages=[StudyMessage.from_user("u1", "# Initializing study materials...")],
        )
        assert not chat.is_initializing
        assert chat.has_content

    def test_lesson_heading_is_not_sentinel(self):
        chat = StudySessionChat(
            group_id="g1", topic="Cells", messages=[StudyMessage.from_assistant("# Cells")]
        )
        assert not chat.is_initializing


# ── GroupStore ───────────────────────────────────────────────


class TestGroupStore:
    @pytest.mark.asyncio
    async def test_users(self, group_store):
        ana = await group_store.create_user(User(name="Ana", email="ana@example.com"))
        assert (await group_store.get_user(ana.id)).name == "Ana"
        assert (await group_store.find_user_by_email("ANA@example.com")).id == ana.id
        with pytest.raises(InputValidationError):
            await group_store.create_user(User(name="Other", email="ana@example.com"))

    @pytest.mark.asyncio
    async def test_get_or_create_user(self, group_store):
        first = await group_store.get_or_create_user(User(name="Nexus AI", email="nexusai@nexus.com"))
        second = await group_store.get_or_create_user(User(name="Nexus AI", email="nexusai@nexus.com"))
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_get_users_skips_unknown(self, group_store):
        ana = await group_store.create_user(User(name="Ana", email="ana@example.com"))
        users = await group_store.get_users([ana.id, "ghost", ana.id])
        assert list(users) == [ana.id]

    @pytest.mark.asyncio
    async def test_groups_for_user_follow_membership(self, group_store):
        group = Group(name="Bio", members=["u1", "u2"], admin_id="u1")
        await group_store.save_group(group)
        assert [g.id for g in await group_store.list_groups_for_user("u2")] == [group.id]

        group.members = ["u1"]
        await group_store.save_group(group)
        assert await group_store.list_groups_for_user("u2") == []

    @pytest.mark.asyncio
    async def test_require_group(self, group_store):
        with pytest.raises(NotFoundError):
            await group_store.require_group("missing")

    @pytest.mark.asyncio
    async def test_messages_ordered_by_creation(self, group_store):
        await group_store.add_message(GroupMessage(group_id="g1", sender_id="u1", text="b", created_at=2.0))
        await group_store.add_message(GroupMessage(group_id="g1", sender_id="u2", text="a", created_at=1.0))
        await group_store.add_message(GroupMessage(group_id="g2", sender_id="u2", text="x"))
        assert [m.text for m in await group_store.list_messages("g1")] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_member_names(self, group_store):
        ana = await group_store.create_user(User(name="Ana", email="ana@example.com"))
        ben = await group_store.create_user(User(name="Ben", email="ben@example.com"))
        group = Group(name="Bio", members=[ben.id, ana.id, "ghost"], admin_id=ana.id)
        assert await group_store.member_names(group) == ["Ben", "Ana"]
