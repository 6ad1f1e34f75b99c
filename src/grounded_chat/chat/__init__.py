"""Retrieval-grounded conversation engine."""

from grounded_chat.chat.exceptions import (
    ChatError,
    DuplicatePairError,
    GapNotFoundError,
    GapNotOpenError,
    GenerationNotConfiguredError,
    MessageTooLongError,
    PairNotFoundError,
    SessionNotFoundError,
    SummarizationError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.models import (
    ChatReply,
    ConversationTurn,
    MatchedPair,
    ParsedAnswer,
    StreamEvent,
    WorkspaceSettings,
)

__all__ = [
    "ChatError",
    "ChatReply",
    "ConversationTurn",
    "DuplicatePairError",
    "GapNotFoundError",
    "GapNotOpenError",
    "GenerationNotConfiguredError",
    "MatchedPair",
    "MessageTooLongError",
    "PairNotFoundError",
    "ParsedAnswer",
    "SessionNotFoundError",
    "StreamEvent",
    "SummarizationError",
    "WorkspaceNotFoundError",
    "WorkspaceSettings",
]
