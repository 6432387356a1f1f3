"""Shared promptcascade configuration utilities.

Centralises reading of ~/.promptcascade/configuration.json. Every setting has
a built-in default, so a missing or unreadable file means "use defaults".

Example file::

    {
      "llm": {"provider": "openai", "model": "gpt-4o-mini", "max_tokens": 4096,
              "api_key_env_var": "OPENAI_API_KEY"},
      "cascade": {"max_depth": 99, "max_question_attempts": 10,
                  "store_conflict_retries": 3},
      "defaults": {"system_prompt": "", "user_prompt": ""},
      "naming": {"levels": [{"name": "Section {{nn}}"}]}
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from promptcascade.ordering.naming import NamingConfig

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_MAX_DEPTH = 99
DEFAULT_MAX_QUESTION_ATTEMPTS = 10
DEFAULT_STORE_CONFLICT_RETRIES = 3

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

CONFIG_FILE = Path.home() / ".promptcascade" / "configuration.json"


def get_config_file() -> Path:
    """Config file path; PROMPTCASCADE_CONFIG overrides the default location."""
    override = os.environ.get("PROMPTCASCADE_CONFIG")
    return Path(override) if override else CONFIG_FILE


def load_config() -> dict[str, Any]:
    """Load configuration from disk, returning {} when absent or malformed."""
    path = get_config_file()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _section(name: str) -> dict[str, Any]:
    value = load_config().get(name, {})
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the preferred LiteLLM model string (e.g. 'openai/gpt-4o-mini')."""
    llm = _section("llm")
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_max_tokens() -> int:
    return _section("llm").get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = _section("llm").get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_max_depth() -> int:
    return _section("cascade").get("max_depth", DEFAULT_MAX_DEPTH)


def get_max_question_attempts() -> int:
    return _section("cascade").get("max_question_attempts", DEFAULT_MAX_QUESTION_ATTEMPTS)


def get_store_conflict_retries() -> int:
    return _section("cascade").get("store_conflict_retries", DEFAULT_STORE_CONFLICT_RETRIES)


def get_naming_config() -> NamingConfig:
    return NamingConfig.model_validate(_section("naming"))


# ---------------------------------------------------------------------------
# CascadeConfig – shared by runner, materializer and cascade executor
# ---------------------------------------------------------------------------


@dataclass
class CascadeConfig:
    """Engine configuration loaded from ~/.promptcascade/configuration.json."""

    max_depth: int = field(default_factory=get_max_depth)
    max_question_attempts: int = field(default_factory=get_max_question_attempts)
    store_conflict_retries: int = field(default_factory=get_store_conflict_retries)
    default_system_prompt: str = field(
        default_factory=lambda: _section("defaults").get("system_prompt", "")
    )
    default_user_prompt: str = field(
        default_factory=lambda: _section("defaults").get("user_prompt", "")
    )
    default_model: str = field(default_factory=get_preferred_model)
    naming: NamingConfig = field(default_factory=get_naming_config)


@dataclass
class LLMConfig:
    """LiteLLM backend configuration."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float | None = None
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
    timeout: float = 120.0
