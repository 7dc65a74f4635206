"""Group chat: member messages and the ``@nexus`` assistant.

A member message is stored and pushed to every other member.  When it
mentions the assistant, the text after the mention (or an image-analysis
instruction when an image is attached) goes to the group agent under the
sender's name; the reply is stored as a message from the assistant user
and pushed to all members.
"""

from __future__ import annotations

import logging
import re

from agents.session_coordinator import SessionCoordinator
from config.prompts.assistant import build_image_prompt
from config.settings import get_settings
from errors import InputValidationError, NexusError
from models.conversation import Part, group_agent_id
from models.events import NEW_GROUP_MESSAGE, GroupMessagePayload
from models.group import Group, GroupMessage, User
from services.multimodal import decode_data_uri
from services.realtime import RealtimeHub

logger = logging.getLogger(__name__)


def extract_mention(text: str, mention: str) -> str | None:
    """Text following *mention* (case-insensitive), or None if not mentioned."""
    match = re.search(re.escape(mention), text or "", re.IGNORECASE)
    if match is None:
        return None
    return text[match.end():].strip()


async def get_assistant_user(coordinator: SessionCoordinator) -> User:
    settings = get_settings()
    return await coordinator.groups.get_or_create_user(User(
        name=settings.assistant_name,
        email=settings.assistant_email,
        profile_pic=settings.assistant_profile_pic,
    ))


async def post_group_message(
    coordinator: SessionCoordinator,
    hub: RealtimeHub,
    group: Group,
    sender: User,
    text: str,
    image: str | None = None,
) -> GroupMessage:
    """Store a member message and push it to the other members.

    Raises:
        InputValidationError: Empty message, bad or oversized image.
    """
    image_ref = mime_type = None
    if image:
        mime_type, raw = decode_data_uri(image)
        limit = get_settings().max_upload_bytes
        if len(raw) > limit:
            raise InputValidationError(f"Image exceeds the {limit} byte upload limit")
        image_ref = await coordinator.blobs.put(
            raw, content_type=mime_type, metadata={"groupId": group.id, "senderId": sender.id}
        )
    if not (text or "").strip() and image_ref is None:
        raise InputValidationError("A message needs text or an image")

    message = GroupMessage(
        group_id=group.id,
        sender_id=sender.id,
        text=text or "",
        image=image_ref,
        image_mime_type=mime_type,
    )
    await coordinator.groups.add_message(message)
    await hub.emit_to_users(
        [m for m in group.members if m != sender.id],
        NEW_GROUP_MESSAGE,
        GroupMessagePayload.of(message, sender),
    )
    return message


async def answer_mention(
    coordinator: SessionCoordinator,
    hub: RealtimeHub,
    group: Group,
    sender: User,
    message: GroupMessage,
) -> GroupMessage | None:
    """Reply as the assistant when *message* mentions it.

    Assistant failures are logged and never propagate to the sender.
    """
    question = extract_mention(message.text, get_settings().assistant_mention)
    if question is None:
        return None

    parts = None
    if message.image:
        parts = [
            Part.from_text(build_image_prompt(question)),
            Part.from_bytes_ref(message.image, message.image_mime_type or "image/jpeg"),
        ]
    try:
        participants = await coordinator.groups.member_names(group)
        reply = await coordinator.submit_turn(
            group.ai_agent_id or group_agent_id(group.id),
            participants,
            sender.name,
            question,
            parts,
        )
        assistant = await get_assistant_user(coordinator)
        ai_message = GroupMessage(group_id=group.id, sender_id=assistant.id, text=reply, is_ai=True)
        await coordinator.groups.add_message(ai_message)
    except NexusError:
        logger.exception("Assistant reply failed in group %s", group.id)
        return None

    await hub.emit_to_users(
        group.members, NEW_GROUP_MESSAGE, GroupMessagePayload.of(ai_message, assistant)
    )
    return ai_message
