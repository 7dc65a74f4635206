"""API request / response models."""

from __future__ import annotations

from pydantic import Field

from models.base import CamelModel
from models.events import StudyMessagePayload
from models.group import StudyMaterial
from models.study import LessonPlan, Quiz


class CreateUserRequest(CamelModel):
    """POST /api/users: request body."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    profile_pic: str | None = None


class CreateGroupRequest(CamelModel):
    """POST /api/groups: request body."""

    name: str = Field(min_length=1)
    members: list[str] = Field(default_factory=list)


class GroupMembersRequest(CamelModel):
    """POST / DELETE /api/groups/{groupId}/members: request body."""

    members: list[str] = Field(min_length=1)


class SendGroupMessageRequest(CamelModel):
    """POST /api/groups/{groupId}/messages: request body.

    ``image`` is a base64 payload, optionally as a ``data:`` URI.
    """

    text: str = ""
    image: str | None = None


class StudyChatRequest(CamelModel):
    """POST /api/study-session/chat: request body."""

    group_id: str
    topic: str = Field(min_length=1)
    message: str = Field(min_length=1)
    ask_assistant: bool = True


class StudyChatResponse(CamelModel):
    message: str | None = None
    messages: list[StudyMessagePayload]


class InitializeSessionRequest(CamelModel):
    """POST /api/study-session/initialize: request body."""

    group_id: str
    topic: str = Field(min_length=1)


class InitializeSessionResponse(CamelModel):
    initialized: bool = True
    already_initialized: bool = False
    messages: list[StudyMessagePayload]
    quiz: Quiz | None = None


class QuizSubmitRequest(CamelModel):
    """POST /api/study-session/quiz/submit: request body."""

    group_id: str
    topic: str = Field(min_length=1)
    answers: list[int]


class QuizSubmitResponse(CamelModel):
    score: int
    correct_count: int
    total_questions: int


class UploadFailure(CamelModel):
    filename: str
    stage: str  # "store" or "lesson"
    error: str


class ProcessMaterialsResponse(CamelModel):
    lesson_plan: LessonPlan | None
    files: list[StudyMaterial]
    failures: list[UploadFailure] = Field(default_factory=list)


class SkillScore(CamelModel):
    user_id: str
    name: str
    score: int
    correct_count: int
    total_questions: int
    completed: bool


class SkillsSummaryResponse(CamelModel):
    """Current quiz scores of a group, grouped by topic then by user."""

    group_id: str
    topics: dict[str, list[SkillScore]]


class StudyChatHistoryResponse(CamelModel):
    group_id: str
    topic: str
    messages: list[StudyMessagePayload]
    quiz: Quiz | None = None


class GroupLessonResponse(CamelModel):
    lesson_plan: LessonPlan | None = None
    materials: list[StudyMaterial]
