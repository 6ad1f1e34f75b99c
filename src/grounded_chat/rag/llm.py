"""Generation client base classes and the Ollama implementation."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from grounded_chat.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMResponseError,
    LLMStreamInterruptedError,
)

logger = logging.getLogger(__name__)


@dataclass
class LLMMessage:
    """A chat message sent to the generation model."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class StreamingCompletion:
    """Live sequence of text fragments plus a deferred full-text handle.

    Iterate the object to receive fragments in emission order. `full_text()`
    resolves only once the sequence is exhausted and equals the
    concatenation of every fragment yielded. A failure while iterating is
    raised to the consumer and to any `full_text()` waiter; fragments
    already yielded stay delivered.
    """

    def __init__(self, fragments: AsyncIterator[str], provider: str = "unknown"):
        self._fragments = fragments
        self.provider = provider
        self._parts: list[str] = []
        self._started = False
        self._done: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        # Mark the exception retrieved when nobody awaits full_text()
        self._done.add_done_callback(
            lambda f: f.cancelled() or f.exception()
        )

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("StreamingCompletion can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            async for fragment in self._fragments:
                if not fragment:
                    continue
                self._parts.append(fragment)
                yield fragment
        except GeneratorExit:
            self._fail(
                LLMStreamInterruptedError("Stream closed before completion", self.provider)
            )
            raise
        except asyncio.CancelledError:
            self._fail(LLMStreamInterruptedError("Stream cancelled", self.provider))
            raise
        except LLMError as e:
            self._fail(e)
            raise
        except Exception as e:
            error = LLMStreamInterruptedError(f"Stream interrupted: {e}", self.provider)
            self._fail(error)
            raise error from e
        else:
            if not self._done.done():
                self._done.set_result("".join(self._parts))
        finally:
            aclose = getattr(self._fragments, "aclose", None)
            if aclose is not None:
                await aclose()

    def _fail(self, error: Exception) -> None:
        if not self._done.done():
            self._done.set_exception(error)

    @property
    def received(self) -> str:
        """Text received so far."""
        return "".join(self._parts)

    async def full_text(self) -> str:
        """Wait for the sequence to finish and return the whole text.

        Drains the sequence itself when nobody has started iterating it.
        """
        if not self._started:
            async for _ in self:
                pass
        return await self._done


class BaseLLM(ABC):
    """Base class for generation clients."""

    def __init__(self, api_key: str = "", model: str = "", timeout: float = 120.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'anthropic', 'openai')."""
        pass

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        """Single-shot completion returning the full text."""
        pass

    @abstractmethod
    async def stream(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> StreamingCompletion:
        """Open a token stream.

        The connection is established and its status validated before
        returning, so failures before any text is produced raise here.
        """
        pass

    def _parse_json_response(self, response_text: str) -> dict[str, Any]:
        """Parse JSON from model output, stripping markdown code fences.

        Returns:
            Parsed JSON object, or empty dict on parse failure
        """
        try:
            text = response_text.strip()
            if text.startswith("```json"):
                text = text[7:]
            elif text.startswith("```"):
                text = text[3:]
            if text.endswith("```"):
                text = text[:-3]
            parsed = json.loads(text.strip())
            return parsed if isinstance(parsed, dict) else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse {self.provider_name} response as JSON: {e}")
            logger.debug(f"Raw response: {response_text}")
            return {}

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map provider HTTP errors to LLM exceptions."""
        if response.status_code == 401:
            raise LLMAuthenticationError("Invalid API key", provider=self.provider_name)
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                provider=self.provider_name,
                retry_after=float(retry_after) if retry_after else None,
            )
        if response.status_code >= 400:
            raise LLMResponseError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                provider=self.provider_name,
                status_code=response.status_code,
            )

    async def _post_json(
        self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None
    ) -> dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
            except httpx.ConnectError as e:
                raise LLMConnectionError(
                    f"Failed to connect: {e}", provider=self.provider_name
                ) from e
            except httpx.TimeoutException as e:
                raise LLMConnectionError(
                    f"Request timed out: {e}", provider=self.provider_name
                ) from e
            self._raise_for_status(response)
            return response.json()

    async def _open_stream(
        self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None
    ) -> AsyncIterator[str]:
        """Send a streaming POST and return an iterator over response lines.

        The iterator owns the HTTP client and closes it when exhausted or
        closed. httpx decodes the body incrementally, so multi-byte UTF-8
        sequences split across network chunks are reassembled.
        """
        client = httpx.AsyncClient(timeout=self.timeout)
        request = client.build_request("POST", url, headers=headers, json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.ConnectError as e:
            await client.aclose()
            raise LLMConnectionError(
                f"Failed to connect: {e}", provider=self.provider_name
            ) from e
        except httpx.TimeoutException as e:
            await client.aclose()
            raise LLMConnectionError(
                f"Request timed out: {e}", provider=self.provider_name
            ) from e

        if response.status_code >= 400:
            try:
                await response.aread()
                self._raise_for_status(response)
            finally:
                await response.aclose()
                await client.aclose()

        async def lines() -> AsyncIterator[str]:
            try:
                async for line in response.aiter_lines():
                    yield line
            except httpx.HTTPError as e:
                raise LLMStreamInterruptedError(
                    f"Stream interrupted: {e}", provider=self.provider_name
                ) from e
            finally:
                await response.aclose()
                await client.aclose()

        return lines()


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the payload of each `data:` line of a Server-Sent Events stream."""
    async for line in lines:
        if line.startswith("data:"):
            yield line[5:].strip()


class OllamaLLM(BaseLLM):
    """Ollama chat client (local models, no API key)."""

    def __init__(
        self,
        base_url: str = "http://ollama:11434",
        model: str = "llama3.1:8b",
        timeout: float = 120.0,
    ):
        super().__init__(api_key="", model=model, timeout=timeout)
        self.base_url = base_url.rstrip("/")

    @property
    def provider_name(self) -> str:
        return "ollama"

    def _payload(
        self, messages: list[LLMMessage], max_tokens: int, temperature: float, stream: bool
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
            "options": {"num_predict": max_tokens, "temperature": temperature},
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        data = await self._post_json(
            f"{self.base_url}/api/chat",
            self._payload(messages, max_tokens, temperature, stream=False),
        )
        return data.get("message", {}).get("content", "")

    async def stream(
        self,
        messages: list[LLMMessage],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> StreamingCompletion:
        lines = await self._open_stream(
            f"{self.base_url}/api/chat",
            self._payload(messages, max_tokens, temperature, stream=True),
        )

        async def fragments() -> AsyncIterator[str]:
            try:
                async for line in lines:
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    if chunk.get("error"):
                        raise LLMStreamInterruptedError(
                            chunk["error"], provider=self.provider_name
                        )
                    yield chunk.get("message", {}).get("content", "")
                    if chunk.get("done"):
                        break
            finally:
                await lines.aclose()

        return StreamingCompletion(fragments(), provider=self.provider_name)
