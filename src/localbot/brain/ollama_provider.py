"""
brain/ollama_provider.py — Ollama Local Transport

Supports any model running in Ollama (llama3.1, qwen2.5, mistral, deepseek-r1,
etc.). Uses the OpenAI-compatible endpoint Ollama exposes at /v1/, so the
OpenAI transport is reused and pointed at localhost.

Tool calling support depends on the model; see brain/capabilities.py.
Models without native tool support answer with content only, which the
agent may still scan for textual tool calls.
"""

from __future__ import annotations

from typing import Optional

from localbot.brain.openai_provider import OpenAICompatProvider
from localbot.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434/v1"


class OllamaProvider(OpenAICompatProvider):
    """
    Ollama transport. No API key required; Ollama must be running.
    Set base_url if Ollama is on a non-standard host/port.
    """

    def __init__(
        self,
        name: str = "ollama",
        base_url: Optional[str] = None,
        timeout: float = 120.0,
    ):
        base_url = _normalise_base_url(base_url or DEFAULT_OLLAMA_URL)
        super().__init__(name=name, base_url=base_url, api_key="ollama", timeout=timeout)

    async def list_models(self) -> list[str]:
        models = await super().list_models()
        log.debug("ollama.list_models", provider=self.name, count=len(models))
        return models


def _normalise_base_url(url: str) -> str:
    """Accept both http://host:11434 and http://host:11434/v1."""
    url = url.rstrip("/")
    return url if url.endswith("/v1") else url + "/v1"
