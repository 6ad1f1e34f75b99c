"""Conversation summaries for session review."""

import logging
from datetime import datetime
from typing import Any

from grounded_chat.chat.exceptions import SessionNotFoundError, SummarizationError
from grounded_chat.chat.sessions import load_turns
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.rag.exceptions import LLMError
from grounded_chat.rag.factory import get_app_llm
from grounded_chat.rag.llm import BaseLLM, LLMMessage

logger = logging.getLogger(__name__)

SUMMARIZE_PROMPT = """You are analyzing a customer support conversation. Extract structured information from the chat.

Return a JSON object with these exact fields:
- summary: A 1-2 sentence summary of what the conversation was about
- visitor_intent: A short phrase describing the visitor's primary intent (e.g., "pricing inquiry", "demo request")
- topics_discussed: Array of topics covered in the conversation
- sentiment: One of "positive", "neutral", or "negative" based on the visitor's tone
- buying_stage: One of "awareness", "consideration", "decision", or "unknown"
- contact_info: Object with {"name": string|null, "email": string|null, "company": string|null}
- action_items: Array of follow-up actions if any were mentioned

Respond ONLY with valid JSON, no markdown or explanation."""

SENTIMENTS = ("positive", "neutral", "negative")
BUYING_STAGES = ("awareness", "consideration", "decision", "unknown")


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def validate_summary(parsed: dict[str, Any]) -> dict[str, Any]:
    """Coerce model output into the stored summary shape."""
    contact = parsed.get("contact_info")
    if not isinstance(contact, dict):
        contact = {}
    sentiment = parsed.get("sentiment")
    stage = parsed.get("buying_stage")
    return {
        "summary": parsed.get("summary") if isinstance(parsed.get("summary"), str) else "",
        "visitor_intent": parsed.get("visitor_intent")
        if isinstance(parsed.get("visitor_intent"), str)
        else "",
        "topics_discussed": _str_list(parsed.get("topics_discussed")),
        "sentiment": sentiment if sentiment in SENTIMENTS else "neutral",
        "buying_stage": stage if stage in BUYING_STAGES else "unknown",
        "contact_info": {
            "name": _str_or_none(contact.get("name")),
            "email": _str_or_none(contact.get("email")),
            "company": _str_or_none(contact.get("company")),
        },
        "action_items": _str_list(parsed.get("action_items")),
        "generated_at": datetime.utcnow().isoformat(),
    }


class ConversationSummarizer:
    """Summarize a stored conversation with the application-level model.

    The summary lives in the session metadata only; it is never fed back
    into chat prompts.
    """

    def __init__(self, store: KnowledgeStore, llm: BaseLLM | None = None):
        self.store = store
        self._llm = llm

    @property
    def llm(self) -> BaseLLM:
        if self._llm is None:
            self._llm = get_app_llm()
        return self._llm

    async def summarize(self, workspace_id: str, session_id: str) -> dict[str, Any]:
        """Generate and store a summary for one session.

        Raises:
            SessionNotFoundError: If the session does not exist in the workspace
            ValueError: If the session has no messages
            LLMProviderNotConfiguredError: If no application model is configured
            SummarizationError: If the model call fails or its output is unusable
        """
        chat_session = await self.store.get_session(workspace_id, session_id)
        if chat_session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")

        turns = load_turns(chat_session)
        if not turns:
            raise ValueError("Session has no messages")

        transcript = "\n".join(
            f"{'Visitor' if t.role == 'user' else 'Assistant'}: {t.content}" for t in turns
        )
        llm = self.llm
        try:
            raw = await llm.complete(
                [
                    LLMMessage(role="system", content=SUMMARIZE_PROMPT),
                    LLMMessage(role="user", content=transcript),
                ],
                max_tokens=1024,
                temperature=0.3,
            )
        except LLMError as e:
            raise SummarizationError(f"Summarization failed: {e}") from e

        parsed = llm._parse_json_response(raw)
        if not parsed:
            raise SummarizationError("Failed to parse summary response")

        summary = validate_summary(parsed)
        await self.store.update_session_metadata(
            workspace_id,
            session_id,
            {"summary": summary, "summarized_at": summary["generated_at"]},
        )
        logger.info(
            f"Summarized session {session_id}: intent={summary['visitor_intent']!r}, "
            f"stage={summary['buying_stage']}"
        )
        return summary
