"""Model provider: builds pydantic-ai model instances from settings.

Model names use the ``"provider/model"`` format shared with LiteLLM
(e.g. ``"gemini/gemini-2.0-flash"``, ``"openai/gpt-4o"``).
"""

from __future__ import annotations

import logging

from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from config.settings import get_settings

logger = logging.getLogger(__name__)


def create_model(model_name: str | None = None):
    """Build a pydantic-ai model instance.

    - ``gemini/*`` → :class:`GoogleModel` (native multimodal, PDFs included)
    - ``anthropic/*`` → :class:`AnthropicModel`
    - ``openai/*`` or bare name → :class:`OpenAIChatModel`

    Args:
        model_name: Model identifier in ``"provider/model"`` format.
                    Defaults to ``settings.default_model``.
    """
    settings = get_settings()
    name = model_name or settings.default_model

    prefix, _, model_id = name.partition("/")
    if not model_id:
        prefix, model_id = "openai", name

    if prefix == "gemini":
        from pydantic_ai.models.google import GoogleModel
        from pydantic_ai.providers.google import GoogleProvider

        provider = GoogleProvider(api_key=settings.gemini_api_key)
        return GoogleModel(model_id, provider=provider)

    if prefix == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        provider = AnthropicProvider(api_key=settings.anthropic_api_key)
        return AnthropicModel(model_id, provider=provider)

    if prefix != "openai":
        logger.warning("Unknown model prefix '%s', treating %s as OpenAI-compatible", prefix, name)

    provider = OpenAIProvider(api_key=settings.openai_api_key or None)
    return OpenAIChatModel(model_id, provider=provider)
