"""Conversation engine errors."""


class ChatError(Exception):
    """Base exception for chat engine failures surfaced to callers."""

    pass


class WorkspaceNotFoundError(ChatError):
    """The workspace does not exist."""

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Workspace not found: {workspace_id}")


class GenerationNotConfiguredError(ChatError):
    """No active generation credential is configured for the workspace."""

    def __init__(self, workspace_id: str, display_name: str = "the assistant"):
        self.workspace_id = workspace_id
        super().__init__(f"Add an API key in Settings to start chatting with {display_name}.")


class MessageTooLongError(ChatError):
    """Incoming message exceeds the configured maximum length."""

    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(f"Message too long ({length} > {max_length} characters)")


class GapNotFoundError(ChatError):
    """The knowledge gap does not exist in this workspace."""

    pass


class GapNotOpenError(ChatError):
    """The knowledge gap was already resolved or dismissed."""

    pass


class DuplicatePairError(ChatError):
    """A near-identical question already exists in the knowledge base."""

    def __init__(self, existing_id: str, similarity: float):
        self.existing_id = existing_id
        self.similarity = similarity
        super().__init__(
            f"Duplicate of knowledge pair {existing_id} (similarity {similarity:.2f})"
        )


class PairNotFoundError(ChatError):
    """The knowledge pair does not exist in this workspace."""

    pass


class SessionNotFoundError(ChatError):
    """The chat session does not exist in this workspace."""

    pass


class SummarizationError(ChatError):
    """The conversation could not be summarized."""

    pass
