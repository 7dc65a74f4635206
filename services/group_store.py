"""Group store: users, groups and group chat messages."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from errors import InputValidationError, NotFoundError
from models.group import Group, GroupMessage, User

logger = logging.getLogger(__name__)


# ── Abstract Interface ───────────────────────────────────────


class GroupStore(ABC):
    """Abstract group store: implement for different backends."""

    # users

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    async def find_user_by_email(self, email: str) -> User | None:
        ...

    @abstractmethod
    async def _insert_user(self, user: User) -> bool:
        """Store a user unless the email is taken.  True if stored."""
        ...

    # groups

    @abstractmethod
    async def get_group(self, group_id: str) -> Group | None:
        ...

    @abstractmethod
    async def save_group(self, group: Group) -> None:
        ...

    @abstractmethod
    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        ...

    # messages

    @abstractmethod
    async def add_message(self, message: GroupMessage) -> None:
        ...

    @abstractmethod
    async def list_messages(self, group_id: str) -> list[GroupMessage]:
        """Messages of a group, oldest first."""
        ...

    async def create_user(self, user: User) -> User:
        if not await self._insert_user(user):
            raise InputValidationError(f"A user with email '{user.email}' already exists")
        logger.info("Created user %s (%s)", user.id, user.email)
        return user

    async def get_or_create_user(self, user: User) -> User:
        """Return the user registered under ``user.email``, creating it if absent."""
        existing = await self.find_user_by_email(user.email)
        if existing is not None:
            return existing
        if await self._insert_user(user):
            return user
        existing = await self.find_user_by_email(user.email)
        if existing is None:
            raise NotFoundError("user", user.email)
        return existing

    async def get_users(self, user_ids: list[str]) -> dict[str, User]:
        users: dict[str, User] = {}
        for user_id in dict.fromkeys(user_ids):
            user = await self.get_user(user_id)
            if user is not None:
                users[user_id] = user
        return users

    async def require_user(self, user_id: str) -> User:
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def require_group(self, group_id: str) -> Group:
        group = await self.get_group(group_id)
        if group is None:
            raise NotFoundError("group", group_id)
        return group

    async def member_names(self, group: Group) -> list[str]:
        users = await self.get_users(group.members)
        return [users[m].name for m in group.members if m in users]


# ── In-Memory Implementation ────────────────────────────────


class InMemoryGroupStore(GroupStore):
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._emails: dict[str, str] = {}
        self._groups: dict[str, Group] = {}
        self._messages: dict[str, list[GroupMessage]] = {}

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def find_user_by_email(self, email: str) -> User | None:
        user_id = self._emails.get(email.lower())
        return self._users.get(user_id) if user_id else None

    async def _insert_user(self, user: User) -> bool:
        email = user.email.lower()
        if email in self._emails:
            return False
        self._emails[email] = user.id
        self._users[user.id] = user
        return True

    async def get_group(self, group_id: str) -> Group | None:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group is not None else None

    async def save_group(self, group: Group) -> None:
        self._groups[group.id] = group.model_copy(deep=True)

    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        groups = [g for g in self._groups.values() if g.is_member(user_id)]
        return [g.model_copy(deep=True) for g in sorted(groups, key=lambda g: g.created_at)]

    async def add_message(self, message: GroupMessage) -> None:
        self._messages.setdefault(message.group_id, []).append(message)

    async def list_messages(self, group_id: str) -> list[GroupMessage]:
        return sorted(self._messages.get(group_id, []), key=lambda m: m.created_at)


# ── Redis Implementation ─────────────────────────────────────


class RedisGroupStore(GroupStore):
    """Redis-backed store.

    Keys: ``user:<id>``, ``user-email:<email>`` (``SET NX`` uniqueness),
    ``group:<id>``, ``user-groups:<userId>`` (set), ``group-messages:<id>`` (list).
    """

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

    async def get_user(self, user_id: str) -> User | None:
        data = await self._redis.get(f"user:{user_id}")
        return User.model_validate_json(data) if data is not None else None

    async def find_user_by_email(self, email: str) -> User | None:
        user_id = await self._redis.get(f"user-email:{email.lower()}")
        return await self.get_user(user_id) if user_id else None

    async def _insert_user(self, user: User) -> bool:
        if not await self._redis.set(f"user-email:{user.email.lower()}", user.id, nx=True):
            return False
        await self._redis.set(f"user:{user.id}", user.model_dump_json())
        return True

    async def get_group(self, group_id: str) -> Group | None:
        data = await self._redis.get(f"group:{group_id}")
        return Group.model_validate_json(data) if data is not None else None

    async def save_group(self, group: Group) -> None:
        previous = await self.get_group(group.id)
        await self._redis.set(f"group:{group.id}", group.model_dump_json())
        for member in group.members:
            await self._redis.sadd(f"user-groups:{member}", group.id)
        if previous is not None:
            for removed in set(previous.members) - set(group.members):
                await self._redis.srem(f"user-groups:{removed}", group.id)

    async def list_groups_for_user(self, user_id: str) -> list[Group]:
        group_ids = await self._redis.smembers(f"user-groups:{user_id}")
        groups: list[Group] = []
        for group_id in group_ids:
            group = await self.get_group(group_id)
            if group is not None and group.is_member(user_id):
                groups.append(group)
        return sorted(groups, key=lambda g: g.created_at)

    async def add_message(self, message: GroupMessage) -> None:
        await self._redis.rpush(f"group-messages:{message.group_id}", message.model_dump_json())

    async def list_messages(self, group_id: str) -> list[GroupMessage]:
        raw = await self._redis.lrange(f"group-messages:{group_id}", 0, -1)
        messages = [GroupMessage.model_validate_json(item) for item in raw]
        return sorted(messages, key=lambda m: m.created_at)

    async def close(self) -> None:
        await self._redis.aclose()


# ── Module-level Singleton ───────────────────────────────────

_store: GroupStore | None = None


def get_group_store() -> GroupStore:
    """Get the singleton group store instance."""
    global _store
    if _store is None:
        from config.settings import get_settings

        settings = get_settings()
        if settings.store_type == "redis" and settings.redis_url:
            _store = RedisGroupStore(redis_url=settings.redis_url)
            logger.info("Initialized RedisGroupStore")
        else:
            _store = InMemoryGroupStore()
            logger.info("Initialized InMemoryGroupStore")
    return _store
