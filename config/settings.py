"""Pydantic Settings: typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from config.llm_config import LLMConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5001
    cors_origins: list[str] = ["http://localhost:5173"]
    debug: bool = False
    log_level: str = "INFO"

    # ── LLM ──────────────────────────────────────────────────
    completion_backend: str = "pydantic_ai"  # "pydantic_ai" or "litellm"
    default_model: str = "gemini/gemini-2.0-flash"
    max_output_tokens: int = 2048
    temperature: float | None = None
    top_p: float | None = None
    seed: int | None = None
    stop: list[str] | None = None
    provider_timeout: float = 90.0  # seconds; no answer in time == provider failure
    max_concurrent_llm_calls: int = 10

    # Provider API keys (LiteLLM also reads these from env)
    gemini_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # ── Storage ──────────────────────────────────────────────
    store_type: str = "memory"  # "memory" or "redis"
    redis_url: str = ""  # e.g. redis://:password@host:6379/0
    blob_store_type: str = "memory"  # "memory" or "filesystem"
    blob_store_dir: str = "data/blobs"
    max_upload_bytes: int = 10 * 1024 * 1024

    # ── Study sessions ───────────────────────────────────────
    study_init_poll_attempts: int = 10
    study_init_poll_interval: float = 1.0  # seconds between re-fetches
    study_init_stale_seconds: int = 120  # an older sentinel may be reclaimed
    max_source_documents: int = 3

    # ── Assistant identity ───────────────────────────────────
    assistant_name: str = "Nexus AI"
    assistant_email: str = "nexusai@nexus.com"
    assistant_profile_pic: str = "https://www.gravatar.com/avatar/?d=mp"
    assistant_mention: str = "@nexus"

    # ── Helpers ───────────────────────────────────────────────

    def get_default_llm_config(self) -> LLMConfig:
        """Build an :class:`LLMConfig` from global .env defaults."""
        return LLMConfig(
            model=self.default_model,
            max_tokens=self.max_output_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            seed=self.seed,
            stop=self.stop,
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
