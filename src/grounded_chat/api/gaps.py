"""Knowledge gap review endpoints."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from grounded_chat.api.dependencies import get_auto_resolver, get_gap_reviewer, get_store
from grounded_chat.api.schemas import (
    AutoResolveResponse,
    BulkGapRequest,
    BulkGapResponse,
    GapItem,
    GapListResponse,
    ResolveGapRequest,
    ResolveGapResponse,
)
from grounded_chat.chat.exceptions import (
    GapNotFoundError,
    GapNotOpenError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.gaps import GapAutoResolver, GapReviewer
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.rag.exceptions import LLMError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/workspaces/{workspace_id}/gaps", tags=["gaps"])


def _raise_http(e: Exception) -> None:
    if isinstance(e, (WorkspaceNotFoundError, GapNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, GapNotOpenError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LLMError):
        raise HTTPException(status_code=502, detail=str(e))
    raise e


@router.get("", response_model=GapListResponse)
async def list_gaps(
    workspace_id: str,
    status: Literal["open", "resolved", "dismissed", "all"] = Query(default="open"),
    reviewer: GapReviewer = Depends(get_gap_reviewer),
    store: KnowledgeStore = Depends(get_store),
) -> GapListResponse:
    """List knowledge gaps of a workspace, oldest first."""
    if await store.get_workspace(workspace_id) is None:
        raise HTTPException(status_code=404, detail=f"Workspace not found: {workspace_id}")
    gaps = await reviewer.list_gaps(workspace_id, status=None if status == "all" else status)
    return GapListResponse(gaps=[GapItem.model_validate(g) for g in gaps], total=len(gaps))


@router.post("/auto-resolve", response_model=AutoResolveResponse)
async def auto_resolve(
    workspace_id: str,
    resolver: GapAutoResolver = Depends(get_auto_resolver),
    store: KnowledgeStore = Depends(get_store),
) -> AutoResolveResponse:
    """Close open gaps the current knowledge base already answers."""
    if await store.get_workspace(workspace_id) is None:
        raise HTTPException(status_code=404, detail=f"Workspace not found: {workspace_id}")
    result = await resolver.auto_resolve(workspace_id)
    return AutoResolveResponse(**result.to_dict())


@router.patch("/bulk", response_model=BulkGapResponse)
async def bulk_gap_action(
    workspace_id: str,
    request: BulkGapRequest,
    reviewer: GapReviewer = Depends(get_gap_reviewer),
) -> BulkGapResponse:
    """Dismiss or delete several gaps; only open gaps are dismissed."""
    try:
        affected = await reviewer.bulk_action(workspace_id, request.ids, request.action)
    except Exception as e:
        _raise_http(e)
    return BulkGapResponse(affected=affected, action=request.action)


@router.post("/{gap_id}/resolve", response_model=ResolveGapResponse)
async def resolve_gap(
    workspace_id: str,
    gap_id: str,
    request: ResolveGapRequest,
    reviewer: GapReviewer = Depends(get_gap_reviewer),
) -> ResolveGapResponse:
    """Answer a gap, adding the answer to the knowledge base."""
    try:
        gap, pair = await reviewer.resolve(
            workspace_id, gap_id, request.question, request.answer, request.category
        )
    except Exception as e:
        _raise_http(e)
    return ResolveGapResponse(gap=GapItem.model_validate(gap), pair_id=pair.id)


@router.post("/{gap_id}/dismiss", response_model=GapItem)
async def dismiss_gap(
    workspace_id: str,
    gap_id: str,
    reviewer: GapReviewer = Depends(get_gap_reviewer),
) -> GapItem:
    """Dismiss a gap without answering it."""
    try:
        gap = await reviewer.dismiss(workspace_id, gap_id)
    except Exception as e:
        _raise_http(e)
    return GapItem.model_validate(gap)
