"""Realtime event names and payload models.

Events are delivered over the ``/ws`` socket as ``{"event": name, "data": payload}``.
"""

from __future__ import annotations

from models.base import CamelModel
from models.group import Group, GroupMessage, User, UserSummary
from models.study import LessonPlan, StudyMessage

NEW_GROUP = "newGroup"
NEW_GROUP_MESSAGE = "newGroupMessage"
NEW_STUDY_CHAT_MESSAGES = "newStudyChatMessages"
QUIZ_COMPLETED = "quizCompleted"
ONLINE_USERS = "getOnlineUsers"


class SenderRef(CamelModel):
    id: str
    name: str


class StudyMessagePayload(CamelModel):
    """A study-chat message with its sender's display name resolved."""

    role: str
    content: str
    timestamp: float
    sender: SenderRef | None = None

    @classmethod
    def of(cls, message: StudyMessage, users: dict[str, User]) -> StudyMessagePayload:
        sender = None
        if message.sender_id is not None:
            user = users.get(message.sender_id)
            sender = SenderRef(id=message.sender_id, name=user.name if user else "")
        return cls(
            role=message.role,
            content=message.content,
            timestamp=message.timestamp,
            sender=sender,
        )


class GroupMessagePayload(CamelModel):
    id: str
    group_id: str
    sender_id: str
    text: str
    image: str | None = None
    is_ai: bool = False
    created_at: float
    sender_name: str
    sender_profile_pic: str

    @classmethod
    def of(cls, message: GroupMessage, sender: User) -> GroupMessagePayload:
        return cls(
            id=message.id,
            group_id=message.group_id,
            sender_id=message.sender_id,
            text=message.text,
            image=message.image,
            is_ai=message.is_ai,
            created_at=message.created_at,
            sender_name=sender.name,
            sender_profile_pic=sender.profile_pic,
        )


class QuizCompletedEvent(CamelModel):
    group_id: str
    topic: str
    user: UserSummary
    score: int


class GroupPayload(CamelModel):
    """A group with its members' display fields resolved (``newGroup``)."""

    id: str
    name: str
    admin_id: str
    group_image: str = ""
    members: list[UserSummary]
    ai_agent_id: str | None = None
    study_agent_id: str | None = None
    study_session_lesson: LessonPlan | None = None
    created_at: float

    @classmethod
    def of(cls, group: Group, users: dict[str, User]) -> GroupPayload:
        return cls(
            id=group.id,
            name=group.name,
            admin_id=group.admin_id,
            group_image=group.group_image,
            members=[UserSummary.of(users[m]) for m in group.members if m in users],
            ai_agent_id=group.ai_agent_id,
            study_agent_id=group.study_agent_id,
            study_session_lesson=group.study_session_lesson,
            created_at=group.created_at,
        )
