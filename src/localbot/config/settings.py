"""
config/settings.py — LocalBot Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - AgentConfig rejects a turn budget below 1
  - ProviderConfig validates the transport kind and the timeout
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects the LOCALBOT_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from localbot.exceptions import ConfigError

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_PROVIDER_KINDS = {"openai", "ollama"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "LocalBot"
    max_turns: int = 10
    default_model: str = "llama3.1:8b"
    system_prompt: Optional[str] = None         # None = built-in prompt
    parse_text_tool_calls: bool = True

    @field_validator("max_turns")
    @classmethod
    def _positive_turns(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_turns must be >= 1")
        return v


class RouterSettings(BaseModel):
    reasoning_model: str = "llama3.1:8b"
    tool_calling_model: str = "llama3.1:8b"
    fallback_model: Optional[str] = None


class ProviderConfig(BaseModel):
    """One backend transport. The first entry is the fallback for unmatched models."""
    name: str
    kind: str = "openai"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 120.0

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in _VALID_PROVIDER_KINDS:
            raise ValueError(
                f"providers[].kind '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDER_KINDS)}"
            )
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("providers[].timeout_seconds must be > 0")
        return v


def _default_providers() -> list[ProviderConfig]:
    return [ProviderConfig(name="ollama", kind="ollama")]


class ToolsConfig(BaseModel):
    default_timeout_seconds: float = 60.0
    max_result_chars: int = 8000

    @field_validator("default_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tools.default_timeout_seconds must be > 0")
        return v

    @field_validator("max_result_chars")
    @classmethod
    def _positive_chars(cls, v: int) -> int:
        if v < 1:
            raise ValueError("tools.max_result_chars must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    LocalBot runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    litellm_api_key: Optional[str] = Field(default=None, alias="LITELLM_API_KEY")
    ollama_host: Optional[str] = Field(default=None, alias="OLLAMA_HOST")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    router: RouterSettings = Field(default_factory=RouterSettings)
    providers: List[ProviderConfig] = Field(default_factory=_default_providers)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentConfig(**v) if isinstance(v, dict) else v

    @field_validator("router", mode="before")
    @classmethod
    def _coerce_router(cls, v: Any) -> Any:
        return RouterSettings(**v) if isinstance(v, dict) else v

    @field_validator("providers", mode="before")
    @classmethod
    def _coerce_providers(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [ProviderConfig(**p) if isinstance(p, dict) else p for p in v]
        return v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        return ToolsConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def agent_name(self) -> str:
        return self.agent.name

    @property
    def default_model(self) -> str:
        return self.agent.default_model

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems they can't see (duplicate provider
        names, an empty provider list, blank model names).
        """
        errors: list[str] = []

        # ── Providers ────────────────────────────────────────────────────────
        if not self.providers:
            errors.append(
                "providers is empty. Configure at least one backend "
                "(e.g. kind: ollama)."
            )
        seen: set[str] = set()
        for p in self.providers:
            if not p.name.strip():
                errors.append("providers[] entry has an empty name.")
                continue
            if p.name in seen:
                errors.append(
                    f"providers contains the name '{p.name}' more than once. "
                    f"Provider names must be unique."
                )
            seen.add(p.name)

        # ── Model names ──────────────────────────────────────────────────────
        if not self.agent.default_model.strip():
            errors.append("agent.default_model must not be empty.")
        if not self.router.reasoning_model.strip():
            errors.append("router.reasoning_model must not be empty.")
        if not self.router.tool_calling_model.strip():
            errors.append("router.tool_calling_model must not be empty.")

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nLocalBot startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"agent", "router", "providers", "tools", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument
      2. LOCALBOT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("LOCALBOT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build_settings(path: Path) -> Settings:
    yaml_data = _load_yaml(path)
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables,
    and install the result as the process-wide singleton.
    """
    global _singleton
    instance = _build_settings(_resolve_config_path(config_path))
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build_settings(_resolve_config_path(None))
    return _singleton


def reset_settings() -> None:
    """Drop the cached singleton (used by tests)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
