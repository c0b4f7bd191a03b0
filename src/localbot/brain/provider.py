"""
brain/provider.py — Abstract Backend Transport

Every backend (OpenAI-compatible proxy, Ollama, ...) subclasses BaseProvider
and implements chat(), chat_stream() and list_models(). The orchestrator
only ever talks to this contract.

Stream contract:
  - chat_stream() returns a lazy, finite, non-restartable async iterator
  - content fragments may arrive on any chunk
  - tool calls (when the backend supports them natively) and token counts
    arrive on the terminal chunk only (done=True)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from localbot.brain.types import ChatRequest, ChatResponse, StreamChunk
from localbot.exceptions import (  # noqa: F401  re-exported for providers
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)


class BaseProvider(ABC):
    """
    Abstract base for all backend transports.

    Subclasses must implement:
      - chat()         -> one complete ChatResponse
      - chat_stream()  -> async iterator of StreamChunk
      - list_models()  -> names of the models the backend serves

    Class attributes:
      - name: registry key; the router matches model names against it.
    """

    name: str = "base"

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send the request and return the complete answer."""
        ...

    @abstractmethod
    def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Send the request and yield chunks as they arrive."""
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"
