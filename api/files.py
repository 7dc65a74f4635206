"""Serve stored blobs (study materials, group-message images).

Payloads are streamed from the blob store in chunks; references that do
not exist answer 404 before any body is sent.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from agents.session_coordinator import get_session_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("/{reference}")
async def download_file(reference: str):
    blobs = get_session_coordinator().blobs
    info = await blobs.stat(reference)

    headers = {"Content-Length": str(info.size)}
    if info.filename:
        headers["Content-Disposition"] = f"inline; filename*=UTF-8''{quote(info.filename)}"
    logger.debug("Streaming blob %s (%d bytes)", reference, info.size)
    return StreamingResponse(
        blobs.open_stream(reference),
        media_type=info.content_type,
        headers=headers,
    )
