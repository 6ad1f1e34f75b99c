"""Claude (Anthropic) generation client using raw httpx."""

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
    LLMStreamInterruptedError,
)
from grounded_chat.rag.llm import BaseLLM, LLMMessage, StreamingCompletion, iter_sse_data

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeLLM(BaseLLM):
    """Claude client for the Anthropic Messages API.

    Uses raw httpx for API calls (no SDK dependency). The system message
    is sent through the top-level `system` field; the remaining messages
    keep their order.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 120.0,
        api_url: str = ANTHROPIC_API_URL,
    ):
        super().__init__(api_key=api_key, model=model, timeout=timeout)
        self.api_url = api_url
        if not self.api_key:
            logger.warning("Claude API key not configured")

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(
        self,
        messages: list[LLMMessage],
        max_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [m.to_dict() for m in messages if m.role != "system"],
        }
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

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
        """Generate a full response.

        Raises:
            LLMAuthenticationError: If API key is invalid
            LLMRateLimitError: If rate limit is exceeded
            LLMConnectionError: If connection fails
        """
        self._require_key()
        data = await self._post_json(
            self.api_url,
            self._payload(messages, max_tokens, temperature),
            headers=self._get_headers(),
        )
        text_parts = [
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]
        return "".join(text_parts)

    async def stream(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> StreamingCompletion:
        self._require_key()
        lines = await self._open_stream(
            self.api_url,
            self._payload(messages, max_tokens, temperature, stream=True),
            headers=self._get_headers(),
        )
        return StreamingCompletion(self._text_deltas(lines), provider=self.provider_name)

    async def _text_deltas(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(lines):
                if not data:
                    continue
                event = json.loads(data)
                event_type = event.get("type")
                if event_type == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta":
                        yield delta.get("text", "")
                elif event_type == "error":
                    message = event.get("error", {}).get("message", "unknown error")
                    raise LLMStreamInterruptedError(message, provider=self.provider_name)
                elif event_type == "message_stop":
                    break
        finally:
            await lines.aclose()
