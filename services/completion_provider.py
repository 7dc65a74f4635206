"""Completion provider: one round trip to a generative model.

``generate(history, new_parts, options)`` sends the resolved turn history
plus a new user turn and returns the model's text.  Two backends:

- ``PydanticAICompletionProvider`` (default): pydantic-ai ``Agent`` with
  ``ModelRequest``/``ModelResponse`` history and ``BinaryContent`` parts.
- ``LiteLLMCompletionProvider``: ``litellm.acompletion`` with OpenAI-format
  content blocks (``image_url`` / ``file`` data URIs).

Every failure (transport error, timeout, empty output) surfaces as
:class:`ProviderError`; callers decide how to recover.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

import litellm
from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)

from config.llm_config import LLMConfig
from config.settings import get_settings
from errors import ProviderError
from models.conversation import Part, Turn
from services.concurrency import rate_limited_llm_call
from services.multimodal import to_openai_content, to_user_content

logger = logging.getLogger(__name__)


class CompletionResult(BaseModel):
    text: str
    model: str = ""
    latency_ms: float = 0.0


# ── Abstract Interface ───────────────────────────────────────


class CompletionProvider(ABC):
    """Abstract completion provider.

    Subclasses implement :meth:`_complete`; :meth:`generate` adds the
    timeout, logging, and error mapping shared by all backends.
    """

    def __init__(self, config: LLMConfig | None = None, timeout: float | None = None):
        settings = get_settings()
        self._config = settings.get_default_llm_config()
        if config:
            self._config = self._config.merge(config)
        self._timeout = timeout if timeout is not None else settings.provider_timeout

    @property
    def model(self) -> str | None:
        return self._config.model

    @abstractmethod
    async def _complete(self, history: list[Turn], new_parts: list[Part], config: LLMConfig) -> str:
        ...

    async def generate(
        self,
        history: list[Turn],
        new_parts: list[Part],
        options: LLMConfig | None = None,
    ) -> CompletionResult:
        """Send *history* + a new user turn made of *new_parts*.

        Args:
            history: Provider-ready turns (references already resolved).
            new_parts: Parts of the new user turn.
            options: Per-call overrides (e.g. ``max_tokens``).

        Raises:
            ProviderError: On any failure, timeout, or empty output.
        """
        config = self._config.merge(options) if options else self._config
        started = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                self._complete(history, new_parts, config), timeout=self._timeout
            )
        except ProviderError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Completion provider did not answer within {self._timeout:.0f}s"
            ) from exc
        except Exception as exc:
            logger.warning("Completion call failed (%s): %s", config.model, exc)
            raise ProviderError(f"Completion provider failed: {type(exc).__name__}: {exc}") from exc

        if not text or not text.strip():
            raise ProviderError("Completion provider returned an empty response")

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Completion ok: model=%s history_turns=%d new_parts=%d chars=%d latency=%.0fms",
            config.model, len(history), len(new_parts), len(text), latency_ms,
        )
        return CompletionResult(text=text, model=config.model or "", latency_ms=latency_ms)


# ── pydantic-ai backend ──────────────────────────────────────


def to_model_messages(history: list[Turn]) -> list[ModelMessage]:
    """Convert resolved turns into pydantic-ai message history."""
    messages: list[ModelMessage] = []
    for turn in history:
        if turn.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=to_user_content(turn.parts))]))
        else:
            messages.append(ModelResponse(parts=[TextPart(content=turn.text)]))
    return messages


class PydanticAICompletionProvider(CompletionProvider):
    def __init__(self, config: LLMConfig | None = None, timeout: float | None = None, model=None):
        super().__init__(config, timeout)
        if model is None:
            from agents.provider import create_model

            model = create_model(self._config.model)
        self._agent = Agent(model=model, output_type=str, retries=1, defer_model_check=True)

    async def _complete(self, history, new_parts, config):
        result = await rate_limited_llm_call(
            self._agent.run,
            to_user_content(new_parts),
            message_history=to_model_messages(history),
            model_settings=config.to_model_settings(),
        )
        return str(result.output)


# ── LiteLLM backend ──────────────────────────────────────────


def to_openai_messages(history: list[Turn], new_parts: list[Part]) -> list[dict]:
    messages: list[dict] = []
    for turn in history:
        if turn.role == "user":
            messages.append({"role": "user", "content": to_openai_content(turn.parts)})
        else:
            messages.append({"role": "assistant", "content": turn.text})
    messages.append({"role": "user", "content": to_openai_content(new_parts)})
    return messages


class LiteLLMCompletionProvider(CompletionProvider):
    async def _complete(self, history, new_parts, config):
        response = await rate_limited_llm_call(
            litellm.acompletion,
            model=config.model,
            messages=to_openai_messages(history, new_parts),
            **config.to_litellm_kwargs(),
        )
        return response.choices[0].message.content or ""


# ── Module-level Singleton ───────────────────────────────────

_provider: CompletionProvider | None = None


def get_completion_provider() -> CompletionProvider:
    """Get the singleton completion provider for the configured backend."""
    global _provider
    if _provider is None:
        settings = get_settings()
        if settings.completion_backend == "litellm":
            _provider = LiteLLMCompletionProvider()
        else:
            _provider = PydanticAICompletionProvider()
        logger.info(
            "Initialized %s (model=%s)", type(_provider).__name__, _provider.model
        )
    return _provider
