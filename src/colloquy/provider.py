import logging
import os
from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from colloquy.errors import StreamTransportError
from colloquy.streaming import (
    FunctionArgsDelta,
    FunctionNameDelta,
    ModelEvent,
    StreamDone,
    TextDelta,
)

logger = logging.getLogger(__name__)


class ModelProvider:
    """Source of model token streams.

    ``stream()`` yields :class:`~colloquy.streaming.ModelEvent` objects
    and ends with a :class:`~colloquy.streaming.StreamDone`.  Transport
    problems surface either as a raised
    :class:`~colloquy.errors.StreamTransportError` or as an in-band
    :class:`~colloquy.streaming.StreamFailed` event.
    """

    system = "unknown"

    def stream(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[ModelEvent]:
        raise NotImplementedError


class OpenAICompatibleProvider(ModelProvider):
    """Streams chat completions from any OpenAI-compatible endpoint
    (OpenRouter, vLLM, local servers).

    Args:
        base_url: API root, e.g. ``http://localhost:8000/v1``.
        api_key: Key for the endpoint; many local servers accept any value.
    """

    system = "openai_compatible"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        max_retries: int = 5,
        timeout: float = 180.0,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key or "DUMMY",
            max_retries=max_retries,
            timeout=timeout,
        )

    async def stream(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[ModelEvent]:
        kwargs = {"model": model, "messages": messages, "stream": True}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
            kwargs["parallel_tool_calls"] = False
        if temperature is not None:
            kwargs["temperature"] = temperature

        finish_reason = None
        try:
            response = await self.client.chat.completions.create(**kwargs)
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None and delta.content:
                    yield TextDelta(text=delta.content)
                for call in (delta.tool_calls or []) if delta is not None else []:
                    if call.index:
                        logger.warning(f"Ignoring parallel tool call at index {call.index}")
                        continue
                    function = call.function
                    if function is not None and function.name:
                        yield FunctionNameDelta(text=function.name, call_id=call.id)
                    if function is not None and function.arguments:
                        yield FunctionArgsDelta(text=function.arguments)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.APIError as e:
            logger.error(f"{self.system} stream failed: {e}")
            raise StreamTransportError(str(e)) from e
        yield StreamDone(finish_reason=finish_reason)


class OpenAIProvider(OpenAICompatibleProvider):

    system = "openai"

    def __init__(self, api_key: str | None = None, timeout: float = 600.0):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        super().__init__(api_key=api_key, timeout=timeout)


class OpenRouter(OpenAICompatibleProvider):

    system = "openrouter"

    def __init__(self, api_key: str | None = None):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        super().__init__(base_url="https://openrouter.ai/api/v1", api_key=api_key)
