"""Realtime WebSocket endpoint.

Frames are JSON objects ``{"event": <name>, "data": <payload>}`` in both
directions.  Client events:

- ``joinGroup`` / ``leaveGroup``            data: ``{"groupId"}`` or the id string
- ``joinStudyChat`` / ``leaveStudyChat``    data: ``{"groupId", "topic"}``

Server events are listed in :mod:`models.events`.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from models.base import new_id
from services.realtime import RealtimeHub, get_realtime_hub, group_room, study_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _room_for(event: str, data) -> str | None:
    if event in ("joinGroup", "leaveGroup"):
        group_id = data.get("groupId") if isinstance(data, dict) else data
        return group_room(group_id) if isinstance(group_id, str) and group_id else None
    if event in ("joinStudyChat", "leaveStudyChat") and isinstance(data, dict):
        group_id, topic = data.get("groupId"), data.get("topic")
        if group_id and topic:
            return study_room(group_id, topic)
    return None


def handle_client_event(hub: RealtimeHub, conn_id: str, frame) -> bool:
    """Apply one client frame.  False if it was not understood."""
    if not isinstance(frame, dict):
        return False
    event = frame.get("event", "")
    room = _room_for(event, frame.get("data"))
    if room is None:
        return False
    if event.startswith("join"):
        hub.join(conn_id, room)
    else:
        hub.leave(conn_id, room)
    logger.debug("Socket %s %s %s", conn_id, event, room)
    return True


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, user_id: str | None = Query(None, alias="userId")):
    """One client connection; presence is keyed by ``userId``."""
    await websocket.accept()
    hub = get_realtime_hub()
    conn_id = new_id()
    await hub.connect(conn_id, websocket, user_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                frame = None
            if not handle_client_event(hub, conn_id, frame):
                await websocket.send_json({"event": "error", "data": {"message": "Unrecognized event"}})
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(conn_id)
