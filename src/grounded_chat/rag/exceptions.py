"""Generation and embedding errors with provider-specific handling."""


class LLMError(Exception):
    """Base exception for remote model operations."""

    def __init__(self, message: str, provider: str = "unknown"):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class LLMConnectionError(LLMError):
    """Failed to reach the provider (connect error or timeout)."""

    pass


class LLMRateLimitError(LLMError):
    """Provider-side rate limit exceeded."""

    def __init__(
        self, message: str, provider: str, retry_after: float | None = None
    ):
        self.retry_after = retry_after
        super().__init__(message, provider)


class LLMAuthenticationError(LLMError):
    """Authentication failed (invalid or missing API key)."""

    pass


class LLMResponseError(LLMError):
    """Provider returned an error status or an unreadable payload."""

    def __init__(self, message: str, provider: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, provider)


class LLMStreamInterruptedError(LLMError):
    """The token stream failed after it had started."""

    pass


class LLMProviderNotConfiguredError(LLMError):
    """Provider is not registered or lacks configuration."""

    pass
