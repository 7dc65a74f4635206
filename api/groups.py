"""Group endpoints: creation, membership, and group chat."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from agents.group_assistant import answer_mention, post_group_message
from agents.session_coordinator import get_session_coordinator
from api.deps import current_user, member_group
from errors import ForbiddenError, InputValidationError
from models.conversation import group_agent_id, study_agent_id
from models.events import NEW_GROUP, GroupMessagePayload, GroupPayload
from models.group import Group, User
from models.request import CreateGroupRequest, GroupMembersRequest, SendGroupMessageRequest
from services.realtime import get_realtime_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/groups", tags=["groups"])


async def _require_users(user_ids: list[str]) -> None:
    users = await get_session_coordinator().groups.get_users(user_ids)
    missing = [u for u in user_ids if u not in users]
    if missing:
        raise InputValidationError(f"Unknown user(s): {', '.join(missing)}")


async def _payload(group: Group) -> GroupPayload:
    users = await get_session_coordinator().groups.get_users(group.members)
    return GroupPayload.of(group, users)


@router.post("", response_model=GroupPayload, status_code=201)
async def create_group(req: CreateGroupRequest, user: User = Depends(current_user)):
    """Create a group; the caller becomes its admin and first member."""
    members = list(dict.fromkeys([user.id, *req.members]))
    await _require_users(members)

    group = Group(name=req.name, members=members, admin_id=user.id)
    group.ai_agent_id = group_agent_id(group.id)
    group.study_agent_id = study_agent_id(group.id)
    await get_session_coordinator().groups.save_group(group)
    logger.info("Group %s created by %s with %d member(s)", group.id, user.id, len(members))

    payload = await _payload(group)
    await get_realtime_hub().emit_to_users([m for m in members if m != user.id], NEW_GROUP, payload)
    return payload


@router.get("", response_model=list[GroupPayload])
async def list_groups(user: User = Depends(current_user)):
    groups = await get_session_coordinator().groups.list_groups_for_user(user.id)
    return [await _payload(g) for g in groups]


@router.post("/{group_id}/members", response_model=GroupPayload)
async def add_members(group_id: str, req: GroupMembersRequest, user: User = Depends(current_user)):
    """Admin only.  Newly added members receive ``newGroup``."""
    group = await get_session_coordinator().groups.require_group(group_id)
    if group.admin_id != user.id:
        raise ForbiddenError("Only the group admin can add members")

    added = [m for m in dict.fromkeys(req.members) if not group.is_member(m)]
    await _require_users(added)
    group.members.extend(added)
    await get_session_coordinator().groups.save_group(group)

    payload = await _payload(group)
    if added:
        await get_realtime_hub().emit_to_users(added, NEW_GROUP, payload)
    return payload


@router.delete("/{group_id}/members", response_model=GroupPayload)
async def remove_members(group_id: str, req: GroupMembersRequest, user: User = Depends(current_user)):
    """Admin only; the admin cannot be removed."""
    group = await get_session_coordinator().groups.require_group(group_id)
    if group.admin_id != user.id:
        raise ForbiddenError("Only the group admin can remove members")
    if group.admin_id in req.members:
        raise InputValidationError("The group admin cannot be removed")

    group.members = [m for m in group.members if m not in set(req.members)]
    await get_session_coordinator().groups.save_group(group)
    return await _payload(group)


@router.get("/{group_id}/messages", response_model=list[GroupMessagePayload])
async def list_messages(group_id: str, user: User = Depends(current_user)):
    coordinator = get_session_coordinator()
    await member_group(group_id, user)
    messages = await coordinator.groups.list_messages(group_id)
    senders = await coordinator.groups.get_users([m.sender_id for m in messages])
    return [
        GroupMessagePayload.of(m, senders[m.sender_id])
        for m in messages
        if m.sender_id in senders
    ]


@router.post("/{group_id}/messages", response_model=GroupMessagePayload, status_code=201)
async def send_message(
    group_id: str,
    req: SendGroupMessageRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(current_user),
):
    """Post a message; an ``@nexus`` mention is answered in the background."""
    coordinator = get_session_coordinator()
    hub = get_realtime_hub()
    group = await member_group(group_id, user)
    message = await post_group_message(coordinator, hub, group, user, req.text, req.image)
    background_tasks.add_task(answer_mention, coordinator, hub, group, user, message)
    return GroupMessagePayload.of(message, user)
