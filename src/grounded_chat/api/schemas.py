"""API request and response schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from grounded_chat.config import settings


class ChatRequest(BaseModel):
    """Chat request schema."""

    workspace_id: str = Field(..., min_length=1, description="Workspace to chat with")
    conversation_token: str = Field(
        ..., min_length=1, max_length=200, description="Opaque visitor conversation token"
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=settings.CHAT_MAX_MESSAGE_LENGTH,
        description="Visitor message",
    )
    message_id: str | None = Field(
        default=None, max_length=200, description="Client id used to deduplicate retries"
    )
    stream: bool = Field(default=False, description="Stream the answer as Server-Sent Events")

    model_config = {"json_schema_extra": {
        "example": {
            "workspace_id": "0b6a2c4e-0000-0000-0000-000000000000",
            "conversation_token": "visitor-7f3e",
            "message": "How much does the starter plan cost?",
            "message_id": "msg-1",
        }
    }}


class MatchedPairItem(BaseModel):
    """Knowledge pair that supported an answer."""

    id: str
    question: str
    similarity: float


class ChatResponse(BaseModel):
    """Chat response schema."""

    answer: str = Field(..., description="Answer shown to the visitor")
    suggestion_chips: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, description="Top retrieval similarity")
    gap_detected: bool = False
    escalation_offered: bool = False
    booking_url: str | None = None
    matched_pairs: list[MatchedPairItem] = Field(default_factory=list)
    session_id: str | None = None
    turn_count: int = 0


class GapItem(BaseModel):
    """Knowledge gap as returned by the API."""

    id: str
    question: str
    ai_answer: str | None = None
    best_match_id: str | None = None
    similarity_score: float | None = None
    session_id: str | None = None
    status: Literal["open", "resolved", "dismissed"]
    resolved_pair_id: str | None = None
    resolution_type: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None

    model_config = {"from_attributes": True}


class GapListResponse(BaseModel):
    gaps: list[GapItem] = Field(default_factory=list)
    total: int = 0


class ResolveGapRequest(BaseModel):
    """Answer for a knowledge gap; becomes a new knowledge pair."""

    question: str = Field(..., min_length=1, max_length=2000)
    answer: str = Field(..., min_length=1, max_length=10000)
    category: str = Field(default="general", max_length=100)


class ResolveGapResponse(BaseModel):
    gap: GapItem
    pair_id: str


class AutoResolveResponse(BaseModel):
    checked: int
    resolved: int
    errors: list[str] = Field(default_factory=list)


class SummaryResponse(BaseModel):
    session_id: str
    summary: dict[str, Any]


class BulkGapRequest(BaseModel):
    """Dismiss or delete several gaps at once."""

    ids: list[str] = Field(..., min_length=1)
    action: Literal["dismiss", "delete"]


class BulkGapResponse(BaseModel):
    affected: int
    action: str


class PairItem(BaseModel):
    """Knowledge pair as returned by the API (embedding omitted)."""

    id: str
    question: str
    answer: str
    category: str
    source: str
    is_active: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CreatePairRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    answer: str = Field(..., min_length=1, max_length=10000)
    category: str = Field(default="general", max_length=100)


class UpdatePairRequest(BaseModel):
    """Fields left unset keep their stored value."""

    question: str | None = Field(default=None, max_length=2000)
    answer: str | None = Field(default=None, max_length=10000)
    category: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None


class PairMatchRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)


class PairMatchItem(BaseModel):
    id: str
    question: str
    answer: str
    similarity: float


class PairMatchResponse(BaseModel):
    matches: list[PairMatchItem] = Field(default_factory=list)


class SessionListItem(BaseModel):
    """Session overview without the transcript."""

    id: str
    conversation_token: str
    message_count: int
    escalated: bool
    escalated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionListItem] = Field(default_factory=list)
    total: int = 0


class SessionDetail(SessionListItem):
    """Session with its full transcript and stored metadata."""

    turns: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
