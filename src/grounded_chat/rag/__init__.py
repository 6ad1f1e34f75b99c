"""Generation clients: providers, streaming and errors."""

from grounded_chat.rag.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMProviderNotConfiguredError,
    LLMRateLimitError,
    LLMResponseError,
    LLMStreamInterruptedError,
)
from grounded_chat.rag.factory import (
    get_app_llm,
    get_available_providers,
    get_provider,
    register_provider,
)
from grounded_chat.rag.llm import BaseLLM, LLMMessage, OllamaLLM, StreamingCompletion

__all__ = [
    # Base classes
    "BaseLLM",
    "LLMMessage",
    "OllamaLLM",
    "StreamingCompletion",
    # Factory functions
    "get_app_llm",
    "get_provider",
    "get_available_providers",
    "register_provider",
    # Exceptions
    "LLMError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMRateLimitError",
    "LLMResponseError",
    "LLMStreamInterruptedError",
    "LLMProviderNotConfiguredError",
]
