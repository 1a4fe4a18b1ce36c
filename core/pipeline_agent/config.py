"""Shared agent configuration.

Reads ~/.browsary/configuration.json once per lookup so every entry point
(library users, scripts, tests) shares one implementation. Environment
variables override file values.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_FIX_RETRIES = 3
DEFAULT_MAX_ROUNDS = 25

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

AGENT_CONFIG_FILE = Path.home() / ".browsary" / "configuration.json"


def get_agent_config_file() -> dict[str, Any]:
    """Load configuration from ~/.browsary/configuration.json ({} when absent or broken)."""
    if not AGENT_CONFIG_FILE.exists():
        return {}
    try:
        with open(AGENT_CONFIG_FILE, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the model string, e.g. 'openai/gpt-4o-mini'."""
    env_model = os.environ.get("BROWSARY_AGENT_MODEL")
    if env_model:
        return env_model
    llm = get_agent_config_file().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_temperature() -> float | None:
    """Sampling temperature; ``null`` in the config file disables the parameter."""
    llm = get_agent_config_file().get("llm", {})
    if "temperature" in llm:
        return llm["temperature"]
    return DEFAULT_TEMPERATURE


def get_max_fix_retries() -> int:
    """Ceiling for the retry-until-valid workflow."""
    env_value = os.environ.get("BROWSARY_MAX_FIX_RETRIES")
    if env_value:
        try:
            return max(1, int(env_value))
        except ValueError:
            pass
    return get_agent_config_file().get("agent", {}).get("max_fix_retries", DEFAULT_MAX_FIX_RETRIES)


def get_max_rounds() -> int:
    return get_agent_config_file().get("agent", {}).get("max_rounds", DEFAULT_MAX_ROUNDS)


def get_api_key() -> str | None:
    """API key from the env var named in the config file, else OPENAI_API_KEY."""
    llm = get_agent_config_file().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return os.environ.get("OPENAI_API_KEY")


def get_storage_path() -> Path:
    configured = get_agent_config_file().get("storage_path")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".browsary"


# ---------------------------------------------------------------------------
# AgentConfig
# ---------------------------------------------------------------------------


@dataclass
class AgentConfig:
    """Runtime configuration for PipelineAgent."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float | None = field(default_factory=get_temperature)
    max_fix_retries: int = field(default_factory=get_max_fix_retries)
    max_rounds: int = field(default_factory=get_max_rounds)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
    storage_path: Path = field(default_factory=get_storage_path)
    # Output-shape constraint sent with every request.
    response_format: dict[str, Any] | None = field(
        default_factory=lambda: {"type": "json_object"}
    )
