"""Reusable LLM generation parameters.

``LLMConfig`` is embedded in Settings as the global default and can be
narrowed per call (e.g. the curriculum builder asks for JSON output).

Priority chain (low → high):
    .env global defaults  →  per-call overrides
"""

from __future__ import annotations

from pydantic import BaseModel, Field

_SAMPLING_FIELDS = ("temperature", "top_p", "seed", "stop")


class LLMConfig(BaseModel):
    """Generation parameters shared by both completion backends.

    All fields are optional.  ``None`` means "use the model's default".
    """

    model: str | None = Field(default=None, description="'provider/model' identifier")
    max_tokens: int | None = Field(default=None, ge=1, description="Max output tokens")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    seed: int | None = Field(default=None)
    stop: list[str] | None = Field(default=None, description="Stop sequences")
    response_format: str | None = Field(
        default=None, description="'json_object' for structured output (litellm only)"
    )

    def merge(self, overrides: LLMConfig) -> LLMConfig:
        """Return a new LLMConfig: *self* as base, *overrides* wins on non-None fields."""
        base = self.model_dump(exclude_none=True)
        base.update(overrides.model_dump(exclude_none=True))
        return LLMConfig(**base)

    def to_model_settings(self) -> dict:
        """Convert to a pydantic-ai ``model_settings`` dict."""
        settings: dict = {}
        if self.max_tokens is not None:
            settings["max_tokens"] = self.max_tokens
        for field in _SAMPLING_FIELDS:
            val = getattr(self, field)
            if val is None:
                continue
            settings["stop_sequences" if field == "stop" else field] = val
        return settings

    def to_litellm_kwargs(self) -> dict:
        """Convert to ``litellm.acompletion()``-compatible keyword arguments."""
        kw: dict = {}
        if self.max_tokens is not None:
            kw["max_tokens"] = self.max_tokens
        for field in _SAMPLING_FIELDS:
            val = getattr(self, field)
            if val is not None:
                kw[field] = val
        if self.response_format:
            kw["response_format"] = {"type": self.response_format}
        return kw
