"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from agents.session_coordinator import get_session_coordinator
from services.realtime import get_realtime_hub

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    coordinator = get_session_coordinator()
    return {
        "status": "healthy",
        "service": "nexus-study-agents",
        "model": coordinator.provider.model,
        "onlineUsers": len(get_realtime_hub().online_users()),
    }
