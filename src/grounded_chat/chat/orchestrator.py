"""Chat orchestrator: the synchronous and streaming conversation flows.

Both flows walk the same steps: admission, empty knowledge base,
credential, idempotent replay, retrieval, confidence decision, prompt
assembly, generation, parsing, gap recording and session write. The
streaming flow delivers the answer as fragments and runs the gap and
session writes as deferred work after the final event was delivered.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Callable

from grounded_chat.chat.confidence import is_grounded, top_similarity
from grounded_chat.chat.deferred import DeferredTaskRunner
from grounded_chat.chat.exceptions import (
    GenerationNotConfiguredError,
    MessageTooLongError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.gaps import GapRecorder
from grounded_chat.chat.models import (
    ChatReply,
    ConversationTurn,
    MatchedPair,
    ParsedAnswer,
    StreamEvent,
    WorkspaceSettings,
)
from grounded_chat.chat.parser import AnswerStreamExtractor, parse_model_response
from grounded_chat.chat.prompts import build_chat_messages
from grounded_chat.chat.rate_limiter import RateLimiter, RedisRateLimiter
from grounded_chat.chat.sessions import (
    SessionWriter,
    build_turns,
    find_cached_reply,
    load_turns,
)
from grounded_chat.config import settings
from grounded_chat.db.models import ChatSession
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.rag.exceptions import LLMError, LLMProviderNotConfiguredError
from grounded_chat.rag.factory import get_provider
from grounded_chat.rag.llm import BaseLLM, LLMMessage, StreamingCompletion
from grounded_chat.vectorstore.retriever import KnowledgeRetriever

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "You've sent a lot of messages! Please wait a bit before sending more."
NOT_CONFIGURED_MESSAGE = (
    "I'm not set up yet! My knowledge base is empty. Add some Q&A pairs in the "
    "dashboard to get {display_name} started."
)
STREAM_INTERRUPTED_MESSAGE = "Stream interrupted"


def booking_link(url: str | None) -> str | None:
    """Append tracking parameters to the workspace booking URL."""
    if not url:
        return None
    separator = "&" if "?" in url else "?"
    return (
        f"{url}{separator}utm_source={settings.BOOKING_UTM_SOURCE}"
        f"&utm_medium={settings.BOOKING_UTM_MEDIUM}"
    )


@dataclass
class ChatContext:
    """Everything gathered before generation for one request."""

    workspace_id: str
    conversation_token: str
    message: str
    message_id: str | None
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    llm: BaseLLM | None = None
    chat_session: ChatSession | None = None
    previous_turns: list[ConversationTurn] = field(default_factory=list)
    matches: list[MatchedPair] = field(default_factory=list)
    confidence: float = 0.0
    grounded: bool = False
    llm_messages: list[LLMMessage] = field(default_factory=list)
    # Set when the request is answered without generation
    reply: ChatReply | None = None

    @property
    def session_id(self) -> str | None:
        return self.chat_session.id if self.chat_session else None


class ChatStream:
    """Streaming chat response.

    Iterate to receive `token` events followed by one `done` event (or an
    `error` event when generation fails mid-stream).
    """

    def __init__(
        self,
        orchestrator: "ChatOrchestrator | None",
        context: ChatContext,
        completion: StreamingCompletion | None = None,
    ):
        self._orchestrator = orchestrator
        self.context = context
        self._completion = completion
        self.parsed: ParsedAnswer | None = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self.context.reply is not None:
            return self._replay(self.context.reply)
        return self._generate()

    async def _replay(self, reply: ChatReply) -> AsyncIterator[StreamEvent]:
        yield StreamEvent.token(reply.answer)
        data = reply.to_dict()
        yield StreamEvent(type="done", data=data)

    async def _generate(self) -> AsyncIterator[StreamEvent]:
        ctx = self.context
        extractor = AnswerStreamExtractor()
        fragments = self._completion.__aiter__()
        done_sent = False
        try:
            async for fragment in fragments:
                text = extractor.feed(fragment)
                if text:
                    yield StreamEvent.token(text)

            full_text = await self._completion.full_text()
            parsed = parse_model_response(full_text, ctx.workspace.max_suggestion_chips)
            tail = extractor.finish(parsed.answer)
            if tail:
                yield StreamEvent.token(tail)
            self.parsed = parsed

            reply = self._orchestrator._build_reply(ctx, parsed, ctx.chat_session)
            reply.turn_count = len(ctx.previous_turns) + 2
            done_sent = True
            yield StreamEvent(type="done", data=reply.to_dict())
        except LLMError as e:
            logger.warning(f"Chat stream for {ctx.conversation_token[:12]} interrupted: {e}")
            yield StreamEvent.error(STREAM_INTERRUPTED_MESSAGE)
        finally:
            await fragments.aclose()
            if done_sent and self._orchestrator is not None:
                parsed = self.parsed
                self._orchestrator.deferred.submit(
                    lambda: self._orchestrator._persist(ctx, parsed),
                    description=f"chat post-processing ({ctx.conversation_token[:12]})",
                )


class ChatOrchestrator:
    """Compose retrieval, gating, generation and persistence into chat flows."""

    def __init__(
        self,
        store: KnowledgeStore,
        retriever: KnowledgeRetriever,
        rate_limiter: RateLimiter | RedisRateLimiter,
        deferred: DeferredTaskRunner | None = None,
        llm_factory: Callable[[str, str, str], BaseLLM] = get_provider,
        top_k: int | None = None,
        min_similarity: float | None = None,
        history_window: int | None = None,
        max_message_length: int | None = None,
    ):
        self.store = store
        self.retriever = retriever
        self.rate_limiter = rate_limiter
        self.deferred = deferred or DeferredTaskRunner()
        self.llm_factory = llm_factory
        self.gaps = GapRecorder(store)
        self.sessions = SessionWriter(store)
        self.top_k = top_k or settings.CHAT_TOP_K
        self.min_similarity = (
            settings.CHAT_MIN_SIMILARITY if min_similarity is None else min_similarity
        )
        self.history_window = history_window or settings.CHAT_HISTORY_WINDOW
        self.max_message_length = max_message_length or settings.CHAT_MAX_MESSAGE_LENGTH

    async def send(
        self,
        workspace_id: str,
        conversation_token: str,
        message: str,
        message_id: str | None = None,
    ) -> ChatReply:
        """Answer one visitor message and persist the exchange.

        Raises:
            MessageTooLongError: If the message exceeds the length cap
            WorkspaceNotFoundError: If the workspace does not exist
            GenerationNotConfiguredError: If no generation credential is active
            LLMError: If embedding or generation fails
        """
        ctx = await self._prepare(workspace_id, conversation_token, message, message_id)
        if ctx.reply is not None:
            return ctx.reply

        raw = await ctx.llm.complete(
            ctx.llm_messages,
            max_tokens=settings.CHAT_MAX_TOKENS,
            temperature=settings.CHAT_TEMPERATURE,
        )
        parsed = parse_model_response(raw, ctx.workspace.max_suggestion_chips)

        chat_session = await self._persist(ctx, parsed)
        reply = self._build_reply(ctx, parsed, chat_session or ctx.chat_session)
        if chat_session is not None:
            reply.turn_count = len(chat_session.turn_list)
        return reply

    async def send_stream(
        self,
        workspace_id: str,
        conversation_token: str,
        message: str,
        message_id: str | None = None,
    ) -> ChatStream:
        """Start a streaming answer.

        Everything up to opening the model stream happens before this
        returns, so configuration and upstream failures raise here rather
        than inside the event sequence.
        """
        ctx = await self._prepare(workspace_id, conversation_token, message, message_id)
        if ctx.reply is not None:
            return ChatStream(None, ctx)

        completion = await ctx.llm.stream(
            ctx.llm_messages,
            max_tokens=settings.CHAT_MAX_TOKENS,
            temperature=settings.CHAT_TEMPERATURE,
        )
        return ChatStream(self, ctx, completion)

    async def _prepare(
        self,
        workspace_id: str,
        conversation_token: str,
        message: str,
        message_id: str | None,
    ) -> ChatContext:
        if len(message) > self.max_message_length:
            raise MessageTooLongError(len(message), self.max_message_length)

        ctx = ChatContext(
            workspace_id=workspace_id,
            conversation_token=conversation_token,
            message=message,
            message_id=message_id,
        )

        if not await self.rate_limiter.admit(conversation_token):
            ctx.reply = ChatReply(answer=RATE_LIMIT_MESSAGE)
            return ctx

        workspace = await self.store.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        ctx.workspace = WorkspaceSettings(**workspace.settings_dict)

        if await self.store.count_active_pairs(workspace_id) == 0:
            logger.info(f"Workspace {workspace_id} has an empty knowledge base")
            ctx.reply = ChatReply(
                answer=NOT_CONFIGURED_MESSAGE.format(display_name=ctx.workspace.display_name)
            )
            return ctx

        credential = await self.store.get_default_credential(workspace_id)
        if credential is None:
            raise GenerationNotConfiguredError(workspace_id, ctx.workspace.display_name)
        try:
            ctx.llm = self.llm_factory(credential.provider, credential.api_key, credential.model)
        except LLMProviderNotConfiguredError as e:
            raise GenerationNotConfiguredError(
                workspace_id, ctx.workspace.display_name
            ) from e

        ctx.chat_session = await self.sessions.load(workspace_id, conversation_token)
        ctx.previous_turns = load_turns(ctx.chat_session)

        cached = find_cached_reply(ctx.previous_turns, message_id)
        if cached is not None:
            logger.info(f"Replaying cached answer for message {message_id}")
            ctx.reply = self._cached_reply(ctx, cached)
            return ctx

        ctx.matches = await self.retriever.retrieve(
            message, workspace_id, top_k=self.top_k, min_similarity=self.min_similarity
        )
        ctx.confidence = top_similarity(ctx.matches)
        ctx.grounded = is_grounded(ctx.confidence, ctx.workspace.confidence_threshold)
        ctx.llm_messages = build_chat_messages(
            ctx.workspace,
            message,
            ctx.matches,
            ctx.previous_turns,
            grounded=ctx.grounded,
            history_window=self.history_window,
        )
        return ctx

    async def _persist(self, ctx: ChatContext, parsed: ParsedAnswer) -> ChatSession | None:
        """Record a gap when ungrounded, then write the session.

        Failures are logged; the answer has already been decided.
        """
        gap_detected = not ctx.grounded
        if gap_detected:
            try:
                await self.gaps.record(
                    ctx.workspace_id,
                    ctx.message,
                    parsed.answer,
                    ctx.matches,
                    session_id=ctx.session_id,
                )
            except Exception as e:
                logger.error(f"Failed to record knowledge gap: {e}", exc_info=True)

        user_turn, assistant_turn = build_turns(
            ctx.message,
            ctx.message_id,
            parsed,
            ctx.matches,
            confidence=ctx.confidence,
            gap_detected=gap_detected,
        )
        try:
            return await self.sessions.write(
                ctx.workspace_id,
                ctx.conversation_token,
                ctx.previous_turns,
                user_turn,
                assistant_turn,
            )
        except Exception as e:
            logger.error(f"Failed to write chat session: {e}", exc_info=True)
            return None

    def _build_reply(
        self, ctx: ChatContext, parsed: ParsedAnswer, chat_session: ChatSession | None
    ) -> ChatReply:
        return ChatReply(
            answer=parsed.answer,
            suggestion_chips=list(parsed.suggestion_chips),
            confidence=ctx.confidence,
            gap_detected=not ctx.grounded,
            escalation_offered=parsed.escalation_offered,
            booking_url=booking_link(ctx.workspace.booking_url)
            if parsed.escalation_offered
            else None,
            matched_pairs=[m.summary() for m in ctx.matches],
            session_id=chat_session.id if chat_session else None,
            turn_count=len(ctx.previous_turns),
        )

    def _cached_reply(self, ctx: ChatContext, cached: ConversationTurn) -> ChatReply:
        escalation = bool(cached.escalation_offered)
        return ChatReply(
            answer=cached.content,
            suggestion_chips=list(cached.suggestion_chips or []),
            confidence=cached.confidence or 0.0,
            gap_detected=bool(cached.gap_detected),
            escalation_offered=escalation,
            booking_url=booking_link(ctx.workspace.booking_url) if escalation else None,
            matched_pairs=[],
            session_id=ctx.session_id,
            turn_count=len(ctx.previous_turns),
        )
