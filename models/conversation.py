"""Conversation models: per-agent turn history sent to the completion provider.

An *agent* is a logical assistant identity addressed by ``agent_id``:

- ``group_<groupId>``            the group's general assistant
- ``study_<groupId>``            the group's curriculum builder
- ``study_<groupId>_<topic>``    a topic-scoped study assistant
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from models.base import CamelModel, now

TurnRole = Literal["user", "model"]
ScopeType = Literal["group", "study"]


class InlineData(CamelModel):
    """Binary content attached to a turn.

    Exactly one of ``data`` (base64 payload) or ``ref`` (blob-store reference
    or ``http(s)`` URL) is expected; both normalize to a base64 payload before
    the turn is sent to the provider.
    """

    mime_type: str = "image/jpeg"
    data: str | None = None
    ref: str | None = None


class Part(CamelModel):
    """One content part of a turn: text or inline binary data."""

    text: str | None = None
    inline_data: InlineData | None = None

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(text=text)

    @classmethod
    def from_bytes_ref(cls, ref: str, mime_type: str) -> Part:
        return cls(inline_data=InlineData(mime_type=mime_type, ref=ref))

    @property
    def is_usable(self) -> bool:
        if self.text:
            return True
        if self.inline_data is not None:
            return bool(self.inline_data.data or self.inline_data.ref)
        return False


class Turn(CamelModel):
    role: TurnRole
    parts: list[Part] = Field(default_factory=list)
    timestamp: float = Field(default_factory=now)

    @property
    def text(self) -> str:
        return "".join(p.text or "" for p in self.parts)


class Conversation(CamelModel):
    """Ordered, append-only turn history of one agent."""

    agent_id: str
    scope_type: ScopeType
    scope_id: str
    participants: list[str] = Field(default_factory=list)
    history: list[Turn] = Field(default_factory=list)
    created_at: float = Field(default_factory=now)
    last_interaction: float = Field(default_factory=now)

    def add_turn(self, role: TurnRole, parts: list[Part]) -> Turn:
        turn = Turn(role=role, parts=parts)
        self.history.append(turn)
        self.last_interaction = turn.timestamp
        return turn


# ── Agent identifiers ────────────────────────────────────────


def group_agent_id(group_id: str) -> str:
    return f"group_{group_id}"


def study_agent_id(group_id: str, topic: str | None = None) -> str:
    if topic is None:
        return f"study_{group_id}"
    return f"study_{group_id}_{topic}"


def parse_agent_id(agent_id: str) -> tuple[ScopeType, str]:
    """Split an agent identifier into ``(scope_type, group_id)``.

    Raises:
        ValueError: For identifiers outside the known scopes.
    """
    prefix, _, rest = agent_id.partition("_")
    if prefix not in ("group", "study") or not rest:
        raise ValueError(f"Unknown agent id: {agent_id!r}")
    scope_id = rest.split("_", 1)[0] if prefix == "study" else rest
    return prefix, scope_id  # type: ignore[return-value]
