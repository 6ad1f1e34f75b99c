"""Chat session endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from grounded_chat.api.dependencies import get_store, get_summarizer
from grounded_chat.api.schemas import (
    SessionDetail,
    SessionListItem,
    SessionListResponse,
    SummaryResponse,
)
from grounded_chat.chat.exceptions import SessionNotFoundError, SummarizationError
from grounded_chat.chat.summarizer import ConversationSummarizer
from grounded_chat.db.models import ChatSession
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.rag.exceptions import LLMProviderNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/workspaces/{workspace_id}/sessions", tags=["sessions"])


def _overview(chat_session: ChatSession) -> dict:
    return {
        "id": chat_session.id,
        "conversation_token": chat_session.conversation_token,
        "message_count": len(chat_session.turn_list),
        "escalated": bool(chat_session.escalated),
        "escalated_at": chat_session.escalated_at,
        "created_at": chat_session.created_at,
        "updated_at": chat_session.updated_at,
    }


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    workspace_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    store: KnowledgeStore = Depends(get_store),
) -> SessionListResponse:
    """List conversations of a workspace, most recently active first."""
    if await store.get_workspace(workspace_id) is None:
        raise HTTPException(status_code=404, detail=f"Workspace not found: {workspace_id}")
    sessions = await store.list_sessions(workspace_id, limit=limit)
    return SessionListResponse(
        sessions=[SessionListItem(**_overview(s)) for s in sessions],
        total=len(sessions),
    )


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    workspace_id: str,
    session_id: str,
    store: KnowledgeStore = Depends(get_store),
) -> SessionDetail:
    """Full transcript of one conversation."""
    chat_session = await store.get_session(workspace_id, session_id)
    if chat_session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return SessionDetail(
        **_overview(chat_session),
        turns=chat_session.turn_list,
        metadata=chat_session.metadata_dict,
    )


@router.post("/{session_id}/summarize", response_model=SummaryResponse)
async def summarize_session(
    workspace_id: str,
    session_id: str,
    summarizer: ConversationSummarizer = Depends(get_summarizer),
) -> SummaryResponse:
    """Generate a structured summary of a conversation and store it on the session."""
    try:
        summary = await summarizer.summarize(workspace_id, session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LLMProviderNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SummarizationError as e:
        logger.warning(f"Summarizing session {session_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return SummaryResponse(session_id=session_id, summary=summary)
