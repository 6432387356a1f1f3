"""Tests for configuration loading."""

import json

from promptcascade.config import (
    CascadeConfig,
    LLMConfig,
    get_api_key,
    get_preferred_model,
    load_config,
)


def write_config(tmp_path, monkeypatch, data) -> None:
    path = tmp_path / "configuration.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    monkeypatch.setenv("PROMPTCASCADE_CONFIG", str(path))


def test_defaults_without_file():
    config = CascadeConfig()
    assert config.max_depth == 99
    assert config.max_question_attempts == 10
    assert config.store_conflict_retries == 3
    assert config.default_model == "openai/gpt-4o-mini"
    assert config.naming.levels == []
    assert load_config() == {}


def test_values_from_file(tmp_path, monkeypatch):
    write_config(
        tmp_path,
        monkeypatch,
        {
            "llm": {"provider": "anthropic", "model": "claude-3-haiku", "max_tokens": 2048},
            "cascade": {"max_depth": 4, "max_question_attempts": 3},
            "defaults": {"system_prompt": "Be concise"},
            "naming": {"levels": [{"name": "Section {{nn}}"}]},
        },
    )

    config = CascadeConfig()
    assert config.max_depth == 4
    assert config.max_question_attempts == 3
    assert config.store_conflict_retries == 3
    assert config.default_system_prompt == "Be concise"
    assert config.default_model == "anthropic/claude-3-haiku"
    assert config.naming.levels[0].name == "Section {{nn}}"
    assert LLMConfig().max_tokens == 2048


def test_api_key_from_named_env_var(tmp_path, monkeypatch):
    write_config(tmp_path, monkeypatch, {"llm": {"api_key_env_var": "MY_LLM_KEY"}})
    monkeypatch.setenv("MY_LLM_KEY", "sk-test")

    assert get_api_key() == "sk-test"
    assert LLMConfig().api_key == "sk-test"


def test_malformed_file_means_defaults(tmp_path, monkeypatch):
    write_config(tmp_path, monkeypatch, "{not json")

    assert load_config() == {}
    assert get_preferred_model() == "openai/gpt-4o-mini"
