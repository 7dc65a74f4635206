"""Users, groups, group messages and study materials."""

from __future__ import annotations

from pydantic import Field

from models.base import CamelModel, new_id, now
from models.study import LessonPlan

DEFAULT_PROFILE_PIC = "https://www.gravatar.com/avatar/?d=mp"


class User(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: str
    profile_pic: str = DEFAULT_PROFILE_PIC
    created_at: float = Field(default_factory=now)


class UserSummary(CamelModel):
    """Display fields attached to realtime events."""

    id: str
    name: str
    profile_pic: str = DEFAULT_PROFILE_PIC

    @classmethod
    def of(cls, user: User) -> UserSummary:
        return cls(id=user.id, name=user.name, profile_pic=user.profile_pic)


class StudyMaterial(CamelModel):
    """An uploaded source document kept in the blob store."""

    file_id: str
    filename: str
    content_type: str
    uploaded_by: str
    upload_date: float = Field(default_factory=now)


class Group(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    members: list[str] = Field(default_factory=list)
    admin_id: str
    group_image: str = ""
    ai_agent_id: str | None = None
    study_agent_id: str | None = None
    study_session_lesson: LessonPlan | None = None
    study_materials: list[StudyMaterial] = Field(default_factory=list)
    created_at: float = Field(default_factory=now)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def oldest_materials(self, limit: int) -> list[StudyMaterial]:
        return sorted(self.study_materials, key=lambda m: m.upload_date)[:limit]


class GroupMessage(CamelModel):
    id: str = Field(default_factory=new_id)
    group_id: str
    sender_id: str
    text: str = ""
    image: str | None = None  # blob-store reference
    image_mime_type: str | None = None
    is_ai: bool = False
    created_at: float = Field(default_factory=now)
