"""Embedding providers for knowledge pair questions and visitor queries."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from grounded_chat.config import settings
from grounded_chat.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseError,
)

logger = logging.getLogger(__name__)

# Provider registry
_EMBEDDING_REGISTRY: dict[str, Callable[[], "BaseEmbeddings"]] = {}


def register_embedding_provider(name: str):
    """Decorator to register an embedding provider factory."""

    def decorator(factory: Callable[[], "BaseEmbeddings"]):
        _EMBEDDING_REGISTRY[name.lower()] = factory
        return factory

    return decorator


class BaseEmbeddings(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a list of texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors
        """
        pass

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        embeddings = await self.embed([text])
        return embeddings[0]


class OpenAIEmbeddings(BaseEmbeddings):
    """Embeddings from the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        return "openai"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
    )
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings, one request per call.

        Raises:
            LLMAuthenticationError: If OPENAI_API_KEY is missing or invalid
            LLMRateLimitError: On HTTP 429 (retried)
            LLMConnectionError: On connect errors or timeouts (retried)
        """
        if not texts:
            return []
        if not self.api_key:
            raise LLMAuthenticationError("OPENAI_API_KEY not set", provider=self.provider_name)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/embeddings",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model, "input": texts},
                )
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                raise LLMConnectionError(
                    f"Embedding request failed: {e}", provider=self.provider_name
                ) from e

            if response.status_code == 401:
                raise LLMAuthenticationError("Invalid API key", provider=self.provider_name)
            if response.status_code == 429:
                raise LLMRateLimitError("Rate limit exceeded", provider=self.provider_name)
            if response.status_code >= 400:
                raise LLMResponseError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    provider=self.provider_name,
                    status_code=response.status_code,
                )

            data = sorted(response.json().get("data", []), key=lambda d: d.get("index", 0))
            return [item["embedding"] for item in data]


class SentenceTransformerEmbeddings(BaseEmbeddings):
    """Embeddings using sentence-transformers (runs locally, no external API)."""

    def __init__(self, model: str | None = None):
        self.model_name = model or settings.EMBEDDING_MODEL
        self._model = None

    @property
    def provider_name(self) -> str:
        return "sentence-transformer"

    def _load_model(self):
        """Lazy load the model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ImportError(
                    "sentence-transformers not installed. "
                    "Install with: pip install 'grounded-chat[local]'"
                ) from e

            logger.info(f"Loading sentence-transformer model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        loop = asyncio.get_running_loop()
        # Encoding is CPU-bound; keep it off the event loop
        embeddings = await loop.run_in_executor(
            None, lambda: self._model.encode(texts, convert_to_numpy=True)
        )
        return embeddings.tolist()


class OllamaEmbeddings(BaseEmbeddings):
    """Embeddings using Ollama (requires Ollama server)."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 60.0,
    ):
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_EMBEDDING_MODEL
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        return "ollama"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        embeddings = []

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                for text in texts:
                    response = await client.post(
                        f"{self.base_url}/api/embeddings",
                        json={"model": self.model, "prompt": text},
                    )
                    response.raise_for_status()
                    embeddings.append(response.json().get("embedding", []))
        except httpx.HTTPError as e:
            logger.error(f"HTTP error while generating embeddings: {e}")
            raise LLMConnectionError(
                f"Embedding request failed: {e}", provider=self.provider_name
            ) from e

        return embeddings


# Register providers
@register_embedding_provider("openai")
def _create_openai():
    return OpenAIEmbeddings()


@register_embedding_provider("sentence-transformer")
def _create_sentence_transformer():
    return SentenceTransformerEmbeddings()


@register_embedding_provider("ollama")
def _create_ollama():
    return OllamaEmbeddings()


def get_available_embedding_providers() -> list[str]:
    """Get list of registered embedding provider names."""
    return list(_EMBEDDING_REGISTRY.keys())


def get_embeddings(provider: str | None = None) -> BaseEmbeddings:
    """Get an embeddings instance.

    Args:
        provider: Provider name (defaults to settings.EMBEDDING_PROVIDER)

    Raises:
        ValueError: If provider is not registered
    """
    provider_name = (provider or settings.EMBEDDING_PROVIDER).lower()

    if provider_name not in _EMBEDDING_REGISTRY:
        available = ", ".join(get_available_embedding_providers())
        raise ValueError(
            f"Unknown embedding provider '{provider_name}'. Available: {available}"
        )

    return _EMBEDDING_REGISTRY[provider_name]()
