"""OpenAI Chat Completions client using raw httpx."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from grounded_chat.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
)
from grounded_chat.rag.llm import BaseLLM, LLMMessage, StreamingCompletion, iter_sse_data

logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1"


class OpenAILLM(BaseLLM):
    """OpenAI chat client."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        base_url: str = OPENAI_API_URL,
    ):
        super().__init__(api_key=api_key, model=model, timeout=timeout)
        self.base_url = base_url.rstrip("/")

    @property
    def provider_name(self) -> str:
        return "openai"

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(
        self,
        messages: list[LLMMessage],
        max_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }

    def _require_key(self) -> None:
        if not self.api_key:
            raise LLMAuthenticationError("API key not configured", provider=self.provider_name)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        self._require_key()
        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            self._payload(messages, max_tokens, temperature),
            headers=self._get_headers(),
        )
        choices = data.get("choices") or [{}]
        return choices[0].get("message", {}).get("content") or ""

    async def stream(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> StreamingCompletion:
        self._require_key()
        lines = await self._open_stream(
            f"{self.base_url}/chat/completions",
            self._payload(messages, max_tokens, temperature, stream=True),
            headers=self._get_headers(),
        )
        return StreamingCompletion(self._content_deltas(lines), provider=self.provider_name)

    async def _content_deltas(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(lines):
                if not data:
                    continue
                if data == "[DONE]":
                    break
                chunk = json.loads(data)
                for choice in chunk.get("choices", []):
                    content = choice.get("delta", {}).get("content")
                    if content:
                        yield content
        finally:
            await lines.aclose()
