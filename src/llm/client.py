"""
LLM client for OpenAI-compatible chat-completion APIs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Optional

from openai import AsyncOpenAI, OpenAIError

from src.common.errors import CollaboratorError
from src.generation.config import GenerationConfig

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class GenerationResult:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


def _messages(system_prompt: str, user_message: str) -> list[dict]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


class ChatStream:
    """
    Async iterator over generated text fragments.

    `usage` holds the final prompt/completion token counts once the stream has been
    consumed to the end. `aclose()` stops iteration and closes the upstream response.
    """

    def __init__(self, chunks: AsyncIterator):
        self._chunks = chunks
        self._tokens: Optional[AsyncGenerator[str, None]] = None
        self._upstream_closed = False
        self.usage = TokenUsage()

    def __aiter__(self) -> AsyncIterator[str]:
        if self._tokens is None:
            self._tokens = self._iterate()
        return self._tokens

    async def aclose(self) -> None:
        if self._tokens is not None:
            await self._tokens.aclose()
        # A generator closed before its first step never reaches its finally.
        await self._close_upstream()

    async def _close_upstream(self) -> None:
        if self._upstream_closed:
            return
        self._upstream_closed = True
        close = getattr(self._chunks, "close", None) or getattr(self._chunks, "aclose", None)
        if close is not None:
            await close()

    async def _iterate(self) -> AsyncGenerator[str, None]:
        try:
            async for chunk in self._chunks:
                if chunk.usage is not None:
                    self.usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                    )
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except OpenAIError as e:
            raise CollaboratorError("generation", str(e)) from e
        finally:
            await self._close_upstream()


class LLMClient:
    """OpenAI-compatible chat client (OpenAI, or any server at LLM_BASE_URL)."""

    def __init__(self, client: AsyncOpenAI, model_name: str, max_tokens: int = 4096):
        self.client = client
        self.model_name = model_name
        self.max_tokens = max_tokens

    async def generate(
        self, system_prompt: str, user_message: str, temperature: float
    ) -> GenerationResult:
        """Single non-streamed completion."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=_messages(system_prompt, user_message),
                temperature=temperature,
                max_completion_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise CollaboratorError("generation", str(e)) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        else:
            logger.warning("Empty response from %s", self.model_name)
        usage = response.usage
        return GenerationResult(
            text=text,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

    async def stream(
        self, system_prompt: str, user_message: str, temperature: float
    ) -> ChatStream:
        """Start a streamed completion; iterate the returned ChatStream for tokens."""
        try:
            chunks = await self.client.chat.completions.create(
                model=self.model_name,
                messages=_messages(system_prompt, user_message),
                temperature=temperature,
                max_completion_tokens=self.max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
        except OpenAIError as e:
            raise CollaboratorError("generation", str(e)) from e
        return ChatStream(chunks)


def create_client(config: Optional[GenerationConfig] = None) -> LLMClient:
    """Create a chat client from GenerationConfig (defaults read from the environment)."""
    config = config or GenerationConfig.from_env()
    if not config.api_key:
        raise ValueError("API key required. Set LLM_API_KEY or OPENAI_API_KEY.")
    client = AsyncOpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout_seconds,
    )
    return LLMClient(client, model_name=config.model, max_tokens=config.max_tokens)
