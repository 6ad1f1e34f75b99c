"""Conversation transcript persistence and idempotent replay."""

import logging
import uuid

from grounded_chat.chat.models import ConversationTurn, MatchedPair, ParsedAnswer
from grounded_chat.db.models import ChatSession
from grounded_chat.db.store import KnowledgeStore

logger = logging.getLogger(__name__)


def load_turns(chat_session: ChatSession | None) -> list[ConversationTurn]:
    if chat_session is None:
        return []
    return [ConversationTurn.from_dict(t) for t in chat_session.turn_list]


def find_cached_reply(
    turns: list[ConversationTurn], message_id: str | None
) -> ConversationTurn | None:
    """Assistant turn that answered `message_id`, if it was already handled.

    Only a user turn immediately followed by an assistant turn counts.
    """
    if not message_id:
        return None
    for index, turn in enumerate(turns):
        if turn.role == "user" and turn.message_id == message_id:
            if index + 1 < len(turns) and turns[index + 1].role == "assistant":
                return turns[index + 1]
            return None
    return None


def build_turns(
    message: str,
    message_id: str | None,
    parsed: ParsedAnswer,
    matches: list[MatchedPair],
    confidence: float,
    gap_detected: bool,
) -> tuple[ConversationTurn, ConversationTurn]:
    """Build the user turn and the assistant turn for one exchange."""
    user_turn = ConversationTurn(
        role="user",
        content=message,
        message_id=message_id or str(uuid.uuid4()),
    )
    assistant_turn = ConversationTurn(
        role="assistant",
        content=parsed.answer,
        confidence=confidence,
        matched_pair_ids=[m.id for m in matches],
        suggestion_chips=list(parsed.suggestion_chips),
        gap_detected=gap_detected,
        escalation_offered=parsed.escalation_offered,
    )
    return user_turn, assistant_turn


class SessionWriter:
    """Append exchanges to the transcript of a conversation."""

    def __init__(self, store: KnowledgeStore):
        self.store = store

    async def load(self, workspace_id: str, conversation_token: str) -> ChatSession | None:
        return await self.store.get_session_by_token(workspace_id, conversation_token)

    async def write(
        self,
        workspace_id: str,
        conversation_token: str,
        previous_turns: list[ConversationTurn],
        user_turn: ConversationTurn,
        assistant_turn: ConversationTurn,
    ) -> ChatSession:
        """Upsert the session with both new turns appended.

        Escalation is only ever switched on; the store keeps the first
        escalation timestamp.
        """
        turns = [t.to_dict() for t in previous_turns]
        turns.append(user_turn.to_dict())
        turns.append(assistant_turn.to_dict())

        chat_session = await self.store.upsert_session(
            workspace_id,
            conversation_token,
            turns=turns,
            escalated=bool(assistant_turn.escalation_offered),
        )
        logger.debug(
            f"Session {chat_session.id} now has {len(turns)} turns "
            f"(escalated={chat_session.escalated})"
        )
        return chat_session
