"""Database module: models, engine and the knowledge store."""

from grounded_chat.db.database import async_session_maker, engine, init_db
from grounded_chat.db.models import (
    ApiKey,
    Base,
    ChatSession,
    KnowledgeGap,
    KnowledgePair,
    Workspace,
)

__all__ = [
    "async_session_maker",
    "engine",
    "init_db",
    "Base",
    "Workspace",
    "ApiKey",
    "KnowledgePair",
    "ChatSession",
    "KnowledgeGap",
]
