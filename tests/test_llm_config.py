"""Tests for config.llm_config and the settings defaults it is built from."""

import pytest

from config.llm_config import LLMConfig
from config.settings import Settings


def test_default_all_none():
    cfg = LLMConfig()
    assert cfg.model is None
    assert cfg.max_tokens is None
    assert cfg.response_format is None


def test_validation_ranges():
    with pytest.raises(ValueError):
        LLMConfig(temperature=3.0)
    with pytest.raises(ValueError):
        LLMConfig(max_tokens=0)


def test_merge_override_non_none():
    base = LLMConfig(model="gemini/gemini-2.0-flash", temperature=0.7, max_tokens=2048)
    merged = base.merge(LLMConfig(max_tokens=512))

    assert merged.model == "gemini/gemini-2.0-flash"
    assert merged.temperature == 0.7
    assert merged.max_tokens == 512
    assert base.max_tokens == 2048


def test_to_model_settings_renames_stop():
    cfg = LLMConfig(max_tokens=2048, temperature=0.2, stop=["END"])
    assert cfg.to_model_settings() == {
        "max_tokens": 2048,
        "temperature": 0.2,
        "stop_sequences": ["END"],
    }


def test_to_litellm_kwargs():
    cfg = LLMConfig(max_tokens=100, seed=7, response_format="json_object")
    assert cfg.to_litellm_kwargs() == {
        "max_tokens": 100,
        "seed": 7,
        "response_format": {"type": "json_object"},
    }


def test_settings_default_llm_config():
    settings = Settings(_env_file=None)
    cfg = settings.get_default_llm_config()
    assert cfg.model == "gemini/gemini-2.0-flash"
    assert cfg.max_tokens == 2048
