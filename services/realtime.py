"""Realtime fan-out: in-process room registry over WebSocket connections.

Rooms:

- ``user:<userId>``                every socket of one user (joined on connect)
- ``group:<groupId>``              sockets that have the group open
- ``studychat:<groupId>:<topic>``  sockets viewing one topic's study chat

Delivery is at-most-once: a send that fails drops the connection and is
not retried.  The registry lives in process memory, so one worker process
owns all sockets.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Protocol

from pydantic import BaseModel

from models.events import ONLINE_USERS

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def group_room(group_id: str) -> str:
    return f"group:{group_id}"


def study_room(group_id: str, topic: str) -> str:
    return f"studychat:{group_id}:{topic}"


def _to_jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, (list, tuple)):
        return [_to_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {k: _to_jsonable(v) for k, v in payload.items()}
    return payload


class RealtimeHub:
    """Connection, presence, and room registry for one server process."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._conn_user: dict[str, str] = {}
        self._user_conns: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}

    # ── lifecycle ────────────────────────────────────────────

    async def connect(self, conn_id: str, connection: Connection, user_id: str | None) -> None:
        """Register a socket; a known user joins its own room and goes online."""
        self._connections[conn_id] = connection
        if user_id:
            self._conn_user[conn_id] = user_id
            self._user_conns.setdefault(user_id, set()).add(conn_id)
            self.join(conn_id, user_room(user_id))
        logger.info("Socket connected: %s (user=%s)", conn_id, user_id or "-")
        await self.broadcast(ONLINE_USERS, self.online_users())

    async def disconnect(self, conn_id: str) -> None:
        if not self._remove(conn_id):
            return
        logger.info("Socket disconnected: %s", conn_id)
        await self.broadcast(ONLINE_USERS, self.online_users())

    def _remove(self, conn_id: str) -> bool:
        if self._connections.pop(conn_id, None) is None:
            return False
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(conn_id)
            if not members:
                del self._rooms[room]
        user_id = self._conn_user.pop(conn_id, None)
        if user_id is not None:
            conns = self._user_conns.get(user_id, set())
            conns.discard(conn_id)
            if not conns:
                self._user_conns.pop(user_id, None)
        return True

    # ── rooms ────────────────────────────────────────────────

    def join(self, conn_id: str, room: str) -> None:
        if conn_id in self._connections:
            self._rooms.setdefault(room, set()).add(conn_id)

    def leave(self, conn_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(conn_id)
        if not members:
            del self._rooms[room]

    def room_members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def online_users(self) -> list[str]:
        return list(self._user_conns)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._user_conns

    # ── emit ─────────────────────────────────────────────────

    async def _send_many(self, conn_ids: Iterable[str], event: str, payload: Any) -> int:
        frame = {"event": event, "data": _to_jsonable(payload)}
        targets = [(cid, self._connections[cid]) for cid in conn_ids if cid in self._connections]
        if not targets:
            return 0
        results = await asyncio.gather(
            *(conn.send_json(frame) for _, conn in targets), return_exceptions=True
        )
        delivered = 0
        went_offline: list[str] = []
        for (conn_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Dropping socket %s after failed %s send: %s", conn_id, event, result)
                user_id = self._conn_user.get(conn_id)
                self._remove(conn_id)
                if user_id is not None and not self.is_online(user_id):
                    went_offline.append(user_id)
            else:
                delivered += 1
        if went_offline:
            logger.info("Users went offline after dropped sockets: %s", ", ".join(went_offline))
            # Every nested broadcast removes at least one socket, so this terminates.
            await self.broadcast(ONLINE_USERS, self.online_users())
        return delivered

    async def emit_to_room(
        self, room: str, event: str, payload: Any, exclude_users: Iterable[str] = ()
    ) -> int:
        """Send to every socket in *room*, skipping sockets of *exclude_users*."""
        excluded = set(exclude_users)
        conn_ids = [c for c in self.room_members(room) if self._conn_user.get(c) not in excluded]
        delivered = await self._send_many(conn_ids, event, payload)
        logger.debug("Emitted %s to %s (%d socket(s))", event, room, delivered)
        return delivered

    async def emit_to_users(self, user_ids: Iterable[str], event: str, payload: Any) -> int:
        conn_ids: list[str] = []
        for user_id in dict.fromkeys(user_ids):
            conn_ids.extend(self._user_conns.get(user_id, ()))
        return await self._send_many(conn_ids, event, payload)

    async def broadcast(self, event: str, payload: Any) -> int:
        return await self._send_many(list(self._connections), event, payload)


# ── Module-level Singleton ───────────────────────────────────

_hub: RealtimeHub | None = None


def get_realtime_hub() -> RealtimeHub:
    """Get the process-wide realtime hub."""
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub
