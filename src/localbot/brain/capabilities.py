"""
brain/capabilities.py — Model Capability Registry

Answers two questions about a model name, independent of which backend
serves it:
  - does it accept tool/function-calling schemas?
  - how large is its context window?

Rules are layered (highest priority first):
  1. Runtime overrides (register_capabilities: config, tests, live probing)
  2. Exact match in the known-model table
  3. Base-name prefix match ("qwen2.5:14b" → any "qwen2.5:*" entry)
  4. Family heuristics for tool support; a 32K context default

Usage:
    from localbot.brain.capabilities import model_supports_tools

    if not model_supports_tools("deepseek-r1:14b"):
        ...  # send the request without tool schemas
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from localbot.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_CONTEXT_WINDOW = 32_768


@dataclass(frozen=True)
class ModelCapabilities:
    """Immutable capability snapshot for one model name."""
    supports_tools: bool = False
    context_window: int = DEFAULT_CONTEXT_WINDOW
    description: str = ""

    @property
    def tool_hint(self) -> str:
        return "tools ✓" if self.supports_tools else "chat only"

    def with_updates(self, **kwargs) -> "ModelCapabilities":
        return replace(self, **kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Known models
# ─────────────────────────────────────────────────────────────────────────────

KNOWN_MODELS: dict[str, ModelCapabilities] = {
    "llama3.1:8b":       ModelCapabilities(True,  131_072, "Fast, native tool support"),
    "llama3.1:70b":      ModelCapabilities(True,  131_072, "High quality, native tool support"),
    "llama3.1:405b":     ModelCapabilities(True,  131_072, "Largest Llama 3.1"),
    "llama3.2:1b":       ModelCapabilities(True,  131_072, "Tiny, native tool support"),
    "llama3.2:3b":       ModelCapabilities(True,  131_072, "Compact, native tool support"),
    "qwen2.5:0.5b":      ModelCapabilities(True,   32_768, "Tiny Qwen"),
    "qwen2.5:1.5b":      ModelCapabilities(True,   32_768, "Small Qwen"),
    "qwen2.5:3b":        ModelCapabilities(True,   32_768, "Small Qwen"),
    "qwen2.5:7b":        ModelCapabilities(True,   32_768, "Fast, good tool support"),
    "qwen2.5:14b":       ModelCapabilities(True,   32_768, "Balanced Qwen"),
    "qwen2.5:32b":       ModelCapabilities(True,   32_768, "High quality, good tool support"),
    "qwen2.5:72b":       ModelCapabilities(True,  131_072, "Best quality Qwen"),
    "qwen2.5-coder:7b":  ModelCapabilities(True,   32_768, "Code-tuned Qwen"),
    "qwen2.5-coder:14b": ModelCapabilities(True,   32_768, "Code-tuned Qwen"),
    "qwen2.5-coder:32b": ModelCapabilities(True,   32_768, "Code-tuned Qwen"),
    "mistral:7b":        ModelCapabilities(True,   32_768, "Fast, tool support"),
    "mixtral:8x7b":      ModelCapabilities(True,   32_768, "MoE, good quality"),
    "mixtral:8x22b":     ModelCapabilities(True,   65_536, "Large MoE"),
    "deepseek-r1:7b":    ModelCapabilities(False,  65_536, "Reasoning, no tools"),
    "deepseek-r1:14b":   ModelCapabilities(False,  65_536, "Strong reasoning, no tools"),
    "deepseek-r1:32b":   ModelCapabilities(False,  65_536, "Strong reasoning, no tools"),
    "deepseek-r1:70b":   ModelCapabilities(False,  65_536, "Strong reasoning, no tools"),
    "gemma2:2b":         ModelCapabilities(False,   8_192, "Google model, no tools"),
    "gemma2:9b":         ModelCapabilities(False,   8_192, "Google model, no tools"),
    "gemma2:27b":        ModelCapabilities(False,   8_192, "Google model, no tools"),
    "phi3:mini":         ModelCapabilities(False,   4_096, "Microsoft model"),
    "phi3:medium":       ModelCapabilities(False, 128_000, "Microsoft model"),
    "phi3:14b":          ModelCapabilities(False, 128_000, "Microsoft model"),
    "phi3.5:3.8b":       ModelCapabilities(False, 128_000, "Microsoft model"),
}

# Families assumed tool-capable when a model is not in the table
_TOOL_FAMILIES: tuple[str, ...] = (
    "llama3", "qwen2.5", "mistral", "mixtral", "gpt-", "claude",
)

_RUNTIME_OVERRIDES: dict[str, ModelCapabilities] = {}


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def get_capabilities(model: str) -> ModelCapabilities:
    """Resolve the capabilities for a model name (see module docstring for order)."""
    key = (model or "").strip()

    override = _RUNTIME_OVERRIDES.get(key)
    if override is not None:
        return override

    exact = KNOWN_MODELS.get(key)
    if exact is not None:
        return exact

    base = key.split(":")[0]
    if base:
        for name, caps in KNOWN_MODELS.items():
            if name.split(":")[0] == base or name.startswith(base):
                return caps

    lower = key.lower()
    return ModelCapabilities(supports_tools=any(fam in lower for fam in _TOOL_FAMILIES))


def model_supports_tools(model: str) -> bool:
    """True when tool schemas may be attached to requests for this model."""
    return get_capabilities(model).supports_tools


def get_context_window_size(model: str) -> int:
    return get_capabilities(model).context_window


def register_capabilities(
    model: str,
    *,
    supports_tools: Optional[bool] = None,
    context_window: Optional[int] = None,
) -> ModelCapabilities:
    """
    Override what is known about a model at runtime.

    Unset keyword arguments keep the currently resolved values.
    """
    key = (model or "").strip()
    updates: dict = {}
    if supports_tools is not None:
        updates["supports_tools"] = supports_tools
    if context_window is not None:
        updates["context_window"] = context_window

    caps = get_capabilities(key).with_updates(**updates)
    _RUNTIME_OVERRIDES[key] = caps
    log.debug(
        "capabilities.registered",
        model=key,
        supports_tools=caps.supports_tools,
        context_window=caps.context_window,
    )
    return caps


def clear_overrides() -> None:
    _RUNTIME_OVERRIDES.clear()
