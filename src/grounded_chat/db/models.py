"""SQLAlchemy models for the chat engine.

JSON payloads (workspace settings, embeddings, transcripts) are stored as
text columns and decoded through the helper properties on each model.
"""

import json
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Workspace(Base):
    """A tenant owning a knowledge base and its chat settings."""

    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256))
    settings: Mapped[str] = mapped_column(Text, default="{}")  # JSON WorkspaceSettings

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    @property
    def settings_dict(self) -> dict[str, Any]:
        return json.loads(self.settings or "{}")

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, name={self.name})>"


class ApiKey(Base):
    """Generation credential configured for a workspace.

    The key is stored already decrypted by the credential store that
    provisions it; this table only selects the active default.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workspaces.id"), index=True
    )
    provider: Mapped[str] = mapped_column(String(32))  # anthropic, openai, ollama
    model: Mapped[str] = mapped_column(String(128))
    api_key: Mapped[str] = mapped_column(Text, default="")
    is_default: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<ApiKey(workspace_id={self.workspace_id}, provider={self.provider})>"


class KnowledgePair(Base):
    """A curated question/answer pair with its question embedding."""

    __tablename__ = "knowledge_pairs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workspaces.id"), index=True
    )

    question: Mapped[str] = mapped_column(Text)
    answer: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(64), default="general")
    source: Mapped[str] = mapped_column(String(32), default="manual")
    embedding: Mapped[str] = mapped_column(Text, default="[]")  # JSON float array

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def embedding_vector(self) -> list[float]:
        return json.loads(self.embedding or "[]")

    def __repr__(self) -> str:
        return f"<KnowledgePair(id={self.id}, question={self.question[:30]}...)>"


class ChatSession(Base):
    """Conversation transcript for one visitor conversation token."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "conversation_token", name="uq_chat_session_token"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workspaces.id"), index=True
    )
    conversation_token: Mapped[str] = mapped_column(String(128))

    turns: Mapped[str] = mapped_column(Text, default="[]")  # JSON array of turns
    session_metadata: Mapped[str] = mapped_column("metadata", Text, default="{}")

    # Escalation never reverts once set
    escalated: Mapped[bool] = mapped_column(Boolean, default=False)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    @property
    def turn_list(self) -> list[dict[str, Any]]:
        return json.loads(self.turns or "[]")

    @property
    def metadata_dict(self) -> dict[str, Any]:
        return json.loads(self.session_metadata or "{}")

    def __repr__(self) -> str:
        return f"<ChatSession(id={self.id}, token={self.conversation_token[:12]})>"


class KnowledgeGap(Base):
    """A visitor question the assistant could not answer confidently."""

    __tablename__ = "knowledge_gaps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workspaces.id"), index=True
    )

    question: Mapped[str] = mapped_column(Text)
    ai_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    best_match_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    similarity_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # open -> resolved | dismissed
    status: Mapped[str] = mapped_column(String(16), default="open", index=True)
    resolved_pair_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resolution_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<KnowledgeGap(question={self.question[:30]}..., status={self.status})>"
