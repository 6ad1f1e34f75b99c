"""Knowledge pair endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from grounded_chat.api.dependencies import get_knowledge_base
from grounded_chat.api.schemas import (
    CreatePairRequest,
    PairItem,
    PairMatchItem,
    PairMatchRequest,
    PairMatchResponse,
    UpdatePairRequest,
)
from grounded_chat.chat.exceptions import (
    DuplicatePairError,
    PairNotFoundError,
    WorkspaceNotFoundError,
)
from grounded_chat.knowledge.pairs import KnowledgeBase
from grounded_chat.rag.exceptions import LLMError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/workspaces/{workspace_id}/pairs", tags=["pairs"])


def _raise_http(e: Exception) -> None:
    if isinstance(e, (WorkspaceNotFoundError, PairNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicatePairError):
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "existing_id": e.existing_id},
        )
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, LLMError):
        logger.error(f"Embedding failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    raise e


@router.post("", response_model=PairItem, status_code=201)
async def create_pair(
    workspace_id: str,
    request: CreatePairRequest,
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> PairItem:
    """Add a Q&A pair; near-duplicate questions are rejected with 409."""
    try:
        pair = await kb.add_pair(
            workspace_id, request.question, request.answer, category=request.category
        )
    except Exception as e:
        _raise_http(e)
    return PairItem.model_validate(pair)


@router.patch("/{pair_id}", response_model=PairItem)
async def update_pair(
    workspace_id: str,
    pair_id: str,
    request: UpdatePairRequest,
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> PairItem:
    try:
        pair = await kb.update_pair(
            workspace_id,
            pair_id,
            question=request.question,
            answer=request.answer,
            category=request.category,
            is_active=request.is_active,
        )
    except Exception as e:
        _raise_http(e)
    return PairItem.model_validate(pair)


@router.delete("/{pair_id}", response_model=PairItem)
async def deactivate_pair(
    workspace_id: str,
    pair_id: str,
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> PairItem:
    """Deactivate a pair; it stays stored but is no longer retrieved."""
    try:
        pair = await kb.deactivate_pair(workspace_id, pair_id)
    except Exception as e:
        _raise_http(e)
    return PairItem.model_validate(pair)


@router.post("/test-match", response_model=PairMatchResponse)
async def test_match(
    workspace_id: str,
    request: PairMatchRequest,
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> PairMatchResponse:
    """Preview which pairs a question would match, including weak ones."""
    try:
        matches = await kb.test_match(workspace_id, request.question)
    except Exception as e:
        _raise_http(e)
    return PairMatchResponse(
        matches=[
            PairMatchItem(id=m.id, question=m.question, answer=m.answer, similarity=m.similarity)
            for m in matches
        ]
    )
