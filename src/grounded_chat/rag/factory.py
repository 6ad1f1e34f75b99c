"""Generation provider factory with registry pattern."""

import logging
from typing import Callable

from grounded_chat.config import settings
from grounded_chat.rag.exceptions import LLMProviderNotConfiguredError
from grounded_chat.rag.llm import BaseLLM

logger = logging.getLogger(__name__)

# Provider registry: maps provider names to factories taking (api_key, model)
_PROVIDER_REGISTRY: dict[str, Callable[[str, str], BaseLLM]] = {}


def register_provider(
    name: str,
) -> Callable[[Callable[[str, str], BaseLLM]], Callable[[str, str], BaseLLM]]:
    """Decorator to register a generation provider factory.

    Usage:
        @register_provider("my_provider")
        def _create_my_provider(api_key: str, model: str) -> BaseLLM:
            from grounded_chat.rag.providers.my_provider import MyProviderLLM
            return MyProviderLLM(api_key=api_key, model=model)
    """

    def decorator(factory: Callable[[str, str], BaseLLM]) -> Callable[[str, str], BaseLLM]:
        _PROVIDER_REGISTRY[name.lower()] = factory
        logger.debug(f"Registered LLM provider: {name}")
        return factory

    return decorator


def get_available_providers() -> list[str]:
    """Get list of registered provider names."""
    return list(_PROVIDER_REGISTRY.keys())


def get_provider(name: str, api_key: str = "", model: str = "") -> BaseLLM:
    """Build a generation client from a workspace credential.

    Args:
        name: Provider name ('anthropic', 'openai', 'ollama')
        api_key: Decrypted API key
        model: Model identifier

    Raises:
        LLMProviderNotConfiguredError: If provider is not registered
    """
    name_lower = name.lower()
    if name_lower not in _PROVIDER_REGISTRY:
        available = ", ".join(get_available_providers())
        raise LLMProviderNotConfiguredError(
            f"Unknown provider '{name}'. Available: {available}",
            provider=name,
        )
    return _PROVIDER_REGISTRY[name_lower](api_key, model)


def get_app_llm() -> BaseLLM:
    """Get the application-level model (summarizer), configured by settings.

    Raises:
        LLMProviderNotConfiguredError: If ANTHROPIC_API_KEY is not set
    """
    if not settings.ANTHROPIC_API_KEY:
        raise LLMProviderNotConfiguredError(
            "ANTHROPIC_API_KEY is not set", provider="anthropic"
        )
    return get_provider("anthropic", settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_MODEL)


@register_provider("anthropic")
def _create_anthropic(api_key: str, model: str) -> BaseLLM:
    from grounded_chat.rag.providers.anthropic import ClaudeLLM

    return ClaudeLLM(api_key=api_key, model=model or settings.ANTHROPIC_MODEL)


@register_provider("openai")
def _create_openai(api_key: str, model: str) -> BaseLLM:
    from grounded_chat.rag.providers.openai import OpenAILLM

    return OpenAILLM(
        api_key=api_key, model=model or "gpt-4o-mini", base_url=settings.OPENAI_BASE_URL
    )


@register_provider("ollama")
def _create_ollama(api_key: str, model: str) -> BaseLLM:
    from grounded_chat.rag.llm import OllamaLLM

    return OllamaLLM(base_url=settings.OLLAMA_BASE_URL, model=model or "llama3.1:8b")
