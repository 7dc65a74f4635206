"""Shared request helpers: caller identity and group membership."""

from __future__ import annotations

from fastapi import HTTPException, Request

from agents.session_coordinator import get_session_coordinator
from errors import ForbiddenError
from models.group import Group, User

USER_HEADER = "x-user-id"


async def current_user(request: Request) -> User:
    """Resolve the caller from the ``X-User-Id`` header (401 if unknown)."""
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = await get_session_coordinator().groups.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


async def member_group(group_id: str, user: User) -> Group:
    """Load a group the caller belongs to (404 / 403 otherwise)."""
    group = await get_session_coordinator().groups.require_group(group_id)
    if not group.is_member(user.id):
        raise ForbiddenError(f"User {user.id} is not a member of group {group_id}")
    return group
