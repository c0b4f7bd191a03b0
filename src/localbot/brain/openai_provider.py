"""
brain/openai_provider.py — OpenAI-Compatible Transport

Works against any OpenAI-compatible endpoint: a LiteLLM proxy, vLLM, the
official OpenAI API, or Ollama's /v1 endpoint (see ollama_provider.py).
Handles native tool calling, streamed tool-call deltas, token counting and
error normalisation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx
import openai
from openai import AsyncOpenAI

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
    StreamChunk,
    ToolCall,
)
from localbot.observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_TIMEOUT = 120.0


class OpenAICompatProvider(BaseProvider):
    """
    Transport for any endpoint speaking the OpenAI chat-completions API.

    The SDK client runs over an httpx.AsyncClient so the request timeout is
    enforced at the transport level.
    """

    def __init__(
        self,
        name: str = "litellm",
        base_url: Optional[str] = None,       # None = official OpenAI endpoint
        api_key: Optional[str] = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ):
        self.name = name
        self.base_url = base_url
        self.timeout = timeout
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._client = AsyncOpenAI(
            api_key=api_key or "not-needed",
            base_url=base_url,
            http_client=self._http,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def chat(self, request: ChatRequest) -> ChatResponse:
        log.debug(
            "provider.chat.start",
            provider=self.name,
            model=request.model,
            message_count=len(request.messages),
            has_tools=bool(request.tools),
        )
        try:
            response = await self._client.chat.completions.create(
                **self._build_kwargs(request, stream=False)
            )
        except openai.APIError as e:
            raise self._map_error(e) from e

        result = self._from_provider_response(response)
        log.debug(
            "provider.chat.complete",
            provider=self.name,
            model=result.model,
            input_tokens=result.prompt_tokens,
            output_tokens=result.completion_tokens,
            tool_calls=len(result.message.tool_calls or []),
        )
        return result

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        log.debug(
            "provider.stream.start",
            provider=self.name,
            model=request.model,
            message_count=len(request.messages),
            has_tools=bool(request.tools),
        )
        try:
            stream = await self._client.chat.completions.create(
                **self._build_kwargs(request, stream=True)
            )
        except openai.APIError as e:
            raise self._map_error(e) from e

        # Tool-call deltas arrive in fragments keyed by index
        pending: dict[int, dict[str, str]] = {}
        prompt_tokens: Optional[int] = None
        completion_tokens: Optional[int] = None

        try:
            async for chunk in stream:
                if chunk.usage is not None:
                    prompt_tokens = chunk.usage.prompt_tokens
                    completion_tokens = chunk.usage.completion_tokens

                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue

                if delta.content:
                    yield StreamChunk(content=delta.content)

                for tc in delta.tool_calls or []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function is not None:
                        if tc.function.name:
                            slot["name"] += tc.function.name
                        if tc.function.arguments:
                            slot["arguments"] += tc.function.arguments
        except openai.APIError as e:
            raise self._map_error(e) from e

        tool_calls = [
            ToolCall.create(
                name=slot["name"],
                arguments=slot["arguments"] or "{}",
                id=slot["id"] or None,
            )
            for _, slot in sorted(pending.items())
            if slot["name"]
        ]

        log.debug(
            "provider.stream.complete",
            provider=self.name,
            model=request.model,
            input_tokens=prompt_tokens,
            output_tokens=completion_tokens,
            tool_calls=len(tool_calls),
        )
        yield StreamChunk(
            done=True,
            tool_calls=tool_calls or None,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    async def list_models(self) -> list[str]:
        try:
            models = await self._client.models.list()
        except openai.APIError as e:
            raise self._map_error(e) from e
        return [m.id for m in models.data]

    async def close(self) -> None:
        await self._http.aclose()

    # ── Private helpers ───────────────────────────────────────────────────────

    def _build_kwargs(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [m.to_openai() for m in request.messages],
            "stream": stream,
        }
        if request.tools:
            kwargs["tools"] = [t.model_dump() for t in request.tools]
            kwargs["tool_choice"] = "auto"
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        if stream:
            kwargs["stream_options"] = {"include_usage": True}
        return kwargs

    def _from_provider_response(self, response) -> ChatResponse:
        """Translate an OpenAI ChatCompletion into a ChatResponse."""
        choice = response.choices[0]
        msg = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                function=FunctionCall(
                    name=tc.function.name,
                    arguments=tc.function.arguments or "{}",
                ),
            )
            for tc in (msg.tool_calls or [])
        ]

        usage = response.usage
        return ChatResponse(
            id=response.id or "",
            model=response.model or "",
            message=Message.assistant(msg.content or "", tool_calls=tool_calls),
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )

    def _map_error(self, e: Exception) -> LLMError:
        """Normalise an SDK exception into the LLMError hierarchy."""
        if isinstance(e, openai.AuthenticationError):
            return LLMConnectionError(str(e), provider=self.name, status_code=401)
        if isinstance(e, openai.RateLimitError):
            return LLMRateLimitError(str(e), provider=self.name)
        if isinstance(e, openai.BadRequestError):
            text = str(e).lower()
            if "context" in text or "too long" in text:
                return LLMContextError(str(e), provider=self.name)
            return LLMInvalidRequestError(str(e), provider=self.name)
        if isinstance(e, openai.APIConnectionError):
            return LLMConnectionError(
                f"Cannot reach {self.name} at {self.base_url}: {e}",
                provider=self.name,
            )
        return LLMError(str(e), provider=self.name, status_code=getattr(e, "status_code", None))
