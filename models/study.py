"""Study-session models: topic chats, lesson plans and quizzes."""

from __future__ import annotations

import re
from typing import Annotated, Literal, Union

from pydantic import Field, computed_field, model_validator

from models.base import CamelModel, now

SENTINEL_CONTENT = "# Initializing study materials..."
_SENTINEL_RE = re.compile(r"^#\s+Initializing\b")


# ── Message authors ──────────────────────────────────────────


class HumanAuthor(CamelModel):
    kind: Literal["human"] = "human"
    user_id: str


class AssistantAuthor(CamelModel):
    kind: Literal["assistant"] = "assistant"


class SystemAuthor(CamelModel):
    kind: Literal["system"] = "system"


Author = Annotated[
    Union[HumanAuthor, AssistantAuthor, SystemAuthor],
    Field(discriminator="kind"),
]

_ROLE_BY_KIND = {"human": "user", "assistant": "assistant", "system": "system"}


class StudyMessage(CamelModel):
    author: Author
    content: str
    timestamp: float = Field(default_factory=now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def role(self) -> str:
        return _ROLE_BY_KIND[self.author.kind]

    @property
    def sender_id(self) -> str | None:
        return self.author.user_id if isinstance(self.author, HumanAuthor) else None

    @classmethod
    def from_user(cls, user_id: str, content: str) -> StudyMessage:
        return cls(author=HumanAuthor(user_id=user_id), content=content)

    @classmethod
    def from_assistant(cls, content: str) -> StudyMessage:
        return cls(author=AssistantAuthor(), content=content)


# ── Quiz ─────────────────────────────────────────────────────


class QuizQuestion(CamelModel):
    question: str
    options: list[str] = Field(min_length=4, max_length=4)
    correct: int = Field(ge=0)
    explanation: str = ""

    @model_validator(mode="after")
    def _correct_in_range(self) -> QuizQuestion:
        if self.correct >= len(self.options):
            raise ValueError(
                f"correct index {self.correct} out of range for {len(self.options)} options"
            )
        return self


class QuizResponse(CamelModel):
    user_id: str
    answers: list[int]
    completed: bool = True
    score: int = 0
    correct_count: int = 0
    submitted_at: float = Field(default_factory=now)


class Quiz(CamelModel):
    questions: list[QuizQuestion] = Field(min_length=1)
    responses: list[QuizResponse] = Field(default_factory=list)

    def response_for(self, user_id: str) -> QuizResponse | None:
        return next((r for r in self.responses if r.user_id == user_id), None)


# ── Study session chat ───────────────────────────────────────


class StudySessionChat(CamelModel):
    """Chat, seeded context and quiz of one (group, topic) study session."""

    group_id: str
    topic: str
    messages: list[StudyMessage] = Field(default_factory=list)
    ai_context: str = ""
    quiz: Quiz | None = None
    created_at: float = Field(default_factory=now)
    updated_at: float = Field(default_factory=now)

    @property
    def is_initializing(self) -> bool:
        """True while the first message is the initialization placeholder."""
        if not self.messages:
            return False
        first = self.messages[0]
        return first.role == "assistant" and bool(_SENTINEL_RE.match(first.content))

    @property
    def has_content(self) -> bool:
        return bool(self.messages) and not self.is_initializing

    def touch(self) -> None:
        self.updated_at = now()


# ── Curriculum ───────────────────────────────────────────────


class LessonModule(CamelModel):
    module: str
    lessons: list[str] = Field(default_factory=list)


class LessonPlan(CamelModel):
    course: str
    modules: list[LessonModule] = Field(default_factory=list)
