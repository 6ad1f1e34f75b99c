"""Chat API endpoint: JSON replies or Server-Sent Events."""

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from grounded_chat.api.dependencies import get_orchestrator
from grounded_chat.api.schemas import ChatRequest, ChatResponse
from grounded_chat.chat.exceptions import (
    GenerationNotConfiguredError,
    MessageTooLongError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.orchestrator import ChatOrchestrator, ChatStream
from grounded_chat.rag.exceptions import LLMError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["chat"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def _wants_stream(request: ChatRequest, raw_request: Request) -> bool:
    if request.stream:
        return True
    return "text/event-stream" in raw_request.headers.get("accept", "")


async def sse_events(stream: ChatStream) -> AsyncIterator[str]:
    """Encode chat stream events as Server-Sent Events."""
    async for event in stream:
        yield f"data: {json.dumps(event.to_dict())}\n\n"


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    raw_request: Request,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Answer a visitor message from the workspace knowledge base.

    Returns the JSON reply, or a `text/event-stream` of `token` events
    followed by one `done` (or `error`) event when streaming is requested.
    """
    try:
        if _wants_stream(request, raw_request):
            stream = await orchestrator.send_stream(
                request.workspace_id,
                request.conversation_token,
                request.message,
                message_id=request.message_id,
            )
            return StreamingResponse(
                sse_events(stream), media_type="text/event-stream", headers=SSE_HEADERS
            )

        reply = await orchestrator.send(
            request.workspace_id,
            request.conversation_token,
            request.message,
            message_id=request.message_id,
        )
        return ChatResponse(**reply.to_dict())

    except MessageTooLongError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except WorkspaceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GenerationNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except LLMError as e:
        logger.error(f"Chat failed for workspace {request.workspace_id}: {e}")
        raise HTTPException(status_code=502, detail="The assistant is temporarily unavailable")
