"""User profile endpoints (authentication is handled upstream)."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from agents.session_coordinator import get_session_coordinator
from models.group import DEFAULT_PROFILE_PIC, User
from models.request import CreateUserRequest
from services.realtime import get_realtime_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=User, status_code=201)
async def create_user(req: CreateUserRequest):
    """Register a user profile; the returned ``id`` goes in ``X-User-Id``."""
    user = User(
        name=req.name,
        email=req.email.strip().lower(),
        profile_pic=req.profile_pic or DEFAULT_PROFILE_PIC,
    )
    return await get_session_coordinator().groups.create_user(user)


@router.get("/online")
async def online_users():
    return {"online": get_realtime_hub().online_users()}
