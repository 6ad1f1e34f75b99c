"""Data models for the conversation engine."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

DEFAULT_PERSONALITY_PROMPT = """### Role
You are a friendly and knowledgeable virtual assistant. Your primary role is to answer questions accurately using the knowledge base provided. Be conversational, helpful, and professional.

### Constraints
1. Only answer from the knowledge base context provided.
2. If you don't have enough information, be honest and suggest booking a call.
3. Never make up information or speculate beyond what the knowledge base contains.
4. Keep responses concise, 2-4 sentences for simple questions."""


class WorkspaceSettings(BaseModel):
    """Chat-related settings stored on a workspace."""

    display_name: str = "Assistant"
    personality_prompt: str = DEFAULT_PERSONALITY_PROMPT
    confidence_threshold: float = Field(default=0.78, ge=0.5, le=0.95)
    max_suggestion_chips: int = Field(default=3, ge=1, le=6)
    escalation_enabled: bool = True
    booking_url: str | None = None

    model_config = {"extra": "ignore"}


@dataclass
class MatchedPair:
    """A knowledge pair returned by similarity search."""

    id: str
    question: str
    answer: str
    category: str
    similarity: float

    def summary(self) -> dict[str, Any]:
        """Public view exposed in chat responses."""
        return {"id": self.id, "question": self.question, "similarity": self.similarity}


@dataclass
class ConversationTurn:
    """One message in a conversation transcript."""

    role: Literal["user", "assistant"]
    content: str
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    confidence: float | None = None
    matched_pair_ids: list[str] | None = None
    suggestion_chips: list[str] | None = None
    gap_detected: bool | None = None
    escalation_offered: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            message_id=data.get("message_id") or str(uuid.uuid4()),
            timestamp=data.get("timestamp", ""),
            confidence=data.get("confidence"),
            matched_pair_ids=data.get("matched_pair_ids"),
            suggestion_chips=data.get("suggestion_chips"),
            gap_detected=data.get("gap_detected"),
            escalation_offered=data.get("escalation_offered"),
        )


@dataclass
class ParsedAnswer:
    """Structured answer extracted from model output."""

    answer: str
    suggestion_chips: list[str] = field(default_factory=list)
    escalation_offered: bool = False


@dataclass
class ChatReply:
    """Response contract of the synchronous chat flow."""

    answer: str
    suggestion_chips: list[str] = field(default_factory=list)
    confidence: float = 0.0
    gap_detected: bool = False
    escalation_offered: bool = False
    booking_url: str | None = None
    matched_pairs: list[dict[str, Any]] = field(default_factory=list)
    session_id: str | None = None
    turn_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StreamEvent:
    """One event of the streaming chat flow."""

    type: Literal["token", "done", "error"]
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def token(cls, content: str) -> "StreamEvent":
        return cls(type="token", data={"content": content})

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(type="error", data={"message": message})

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}
