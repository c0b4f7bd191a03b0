"""
exceptions.py — LocalBot Unified Error Hierarchy

All LocalBot-specific exceptions live here. Every layer of the stack
raises typed subclasses of LocalBotError — never bare Exception.

Import from here, not from individual modules:
    from localbot.exceptions import LLMConnectionError, ProviderNotFoundError

Hierarchy:
    LocalBotError
    ├── AgentError
    │   └── ProviderNotFoundError
    ├── ToolError
    │   └── ToolGatewayError
    ├── ConfigError
    └── LLMError
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class LocalBotError(Exception):
    """Base class for all LocalBot exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────

class AgentError(LocalBotError):
    """Base for agent orchestration errors."""


class ProviderNotFoundError(AgentError):
    """No backend transport is registered that could serve the requested model."""

    def __init__(self, model: str, message: str = "") -> None:
        self.model = model
        super().__init__(message or f"No provider registered for model '{model}'")


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(LocalBotError):
    """Base for tool gateway errors."""


class ToolGatewayError(ToolError):
    """
    The gateway itself is broken (not the tool). Tool-level failures are
    returned as text; only these internal faults ever propagate.
    """


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(LocalBotError):
    """Raised by Settings.validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(LocalBotError):
    """Base exception for all backend transport errors."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Provider unreachable or authentication failed."""


class LLMRateLimitError(LLMError):
    """Rate limit hit."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Input exceeds model context window."""


class LLMInvalidRequestError(LLMError):
    """Bad request — invalid parameters or unsupported feature."""


__all__ = [
    "LocalBotError",
    # Agent
    "AgentError",
    "ProviderNotFoundError",
    # Tools
    "ToolError",
    "ToolGatewayError",
    # Config
    "ConfigError",
    # LLM
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
