"""
brain/__init__.py — LocalBot Backend Transports
"""

from __future__ import annotations

from typing import Optional

from localbot.brain.capabilities import (
    ModelCapabilities,
    get_capabilities,
    get_context_window_size,
    model_supports_tools,
    register_capabilities,
)
from localbot.brain.provider import (
    BaseProvider,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from localbot.brain.types import (
    ChatRequest,
    ChatResponse,
    FunctionCall,
    Message,
    Role,
    StreamChunk,
    ToolCall,
    ToolSchema,
    generate_tool_call_id,
)
from localbot.observability.logger import get_logger

log = get_logger(__name__)

__all__ = [
    "ProviderFactory",
    "BaseProvider",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "ChatRequest",
    "ChatResponse",
    "FunctionCall",
    "Message",
    "Role",
    "StreamChunk",
    "ToolCall",
    "ToolSchema",
    "generate_tool_call_id",
    "ModelCapabilities",
    "get_capabilities",
    "get_context_window_size",
    "model_supports_tools",
    "register_capabilities",
]


class ProviderFactory:

    @staticmethod
    def create(
        kind: str,
        name: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
    ) -> BaseProvider:

        kind = kind.lower().strip()

        if kind == "openai":
            from localbot.brain.openai_provider import OpenAICompatProvider
            return OpenAICompatProvider(
                name=name or "litellm",
                base_url=base_url,
                api_key=api_key,
                timeout=timeout,
            )

        elif kind == "ollama":
            from localbot.brain.ollama_provider import OllamaProvider
            return OllamaProvider(name=name or "ollama", base_url=base_url, timeout=timeout)

        else:
            raise ValueError(
                f"Unknown provider kind: '{kind}'. Valid options: openai, ollama"
            )

    @staticmethod
    def from_settings(settings) -> dict[str, BaseProvider]:
        """
        Build every configured provider, in config order.

        The first entry is the fallback the router uses for model names
        no provider key matches. Secrets missing from the provider entry
        are taken from the environment (LITELLM_API_KEY, OLLAMA_HOST).

        Example config.yaml:
            providers:
              - name: ollama
                kind: ollama
                base_url: http://localhost:11434
              - name: litellm
                kind: openai
                base_url: http://localhost:4000
        """
        providers: dict[str, BaseProvider] = {}
        for cfg in settings.providers:
            if cfg.kind == "openai":
                api_key = cfg.api_key or settings.litellm_api_key
                base_url = cfg.base_url
            else:
                api_key = None
                base_url = cfg.base_url or settings.ollama_host
            providers[cfg.name] = ProviderFactory.create(
                kind=cfg.kind,
                name=cfg.name,
                base_url=base_url,
                api_key=api_key,
                timeout=cfg.timeout_seconds,
            )
            log.debug("provider.created", provider=cfg.name, kind=cfg.kind, base_url=base_url)
        return providers
