"""Shared fixtures: in-memory database, deterministic embeddings and a scripted model."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grounded_chat.chat.deferred import DeferredTaskRunner
from grounded_chat.chat.orchestrator import ChatOrchestrator
from grounded_chat.chat.rate_limiter import RateLimiter
from grounded_chat.db.models import Base
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.rag.exceptions import LLMStreamInterruptedError
from grounded_chat.rag.llm import BaseLLM, LLMMessage, StreamingCompletion
from grounded_chat.vectorstore.embeddings import BaseEmbeddings
from grounded_chat.vectorstore.retriever import KnowledgeRetriever

PRICING_Q = "What does the starter plan cost?"
PRICING_A = "The starter plan is $49 per month."
ONBOARDING_Q = "How long does onboarding take?"
ONBOARDING_A = "Onboarding usually takes two weeks."

# Unit vectors chosen so cosine similarities are known exactly
VECTORS = {
    PRICING_Q: [1.0, 0.0, 0.0],
    ONBOARDING_Q: [0.0, 1.0, 0.0],
    "how much is the starter plan?": [0.96, 0.28, 0.0],  # 0.96 vs pricing
    "is there a discount for startups?": [0.6, 0.0, 0.8],  # 0.6 vs pricing
    "do you support sso?": [0.0, 0.0, 1.0],  # orthogonal to everything stored
}

GROUNDED_JSON = (
    '{"answer": "The starter plan is $49 per month.", '
    '"suggestion_chips": ["What is included?", "Is there a trial?", "Can I upgrade?", "Extra"], '
    '"escalation_offered": false}'
)


class StubEmbeddings(BaseEmbeddings):
    """Looks texts up in a fixed table; unknown texts map to the last axis."""

    def __init__(self, vectors: dict[str, list[float]] | None = None):
        self.vectors = {k.strip().lower(): v for k, v in (vectors or VECTORS).items()}
        self.calls: list[str] = []

    @property
    def provider_name(self) -> str:
        return "stub"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.extend(texts)
        return [self.vectors.get(t.strip().lower(), [0.0, 0.0, 1.0]) for t in texts]


class StubLLM(BaseLLM):
    """Scripted model: returns `response` whole or in `chunk_size` fragments."""

    def __init__(self, response: str = GROUNDED_JSON, chunk_size: int = 7, fail_after: int | None = None):
        super().__init__(api_key="test-key", model="stub-model")
        self.response = response
        self.chunk_size = chunk_size
        self.fail_after = fail_after
        self.calls: list[list[LLMMessage]] = []

    @property
    def provider_name(self) -> str:
        return "stub"

    async def complete(self, messages, max_tokens=1024, temperature=0.7) -> str:
        self.calls.append(messages)
        return self.response

    async def stream(self, messages, max_tokens=1024, temperature=0.7) -> StreamingCompletion:
        self.calls.append(messages)
        chunks = [
            self.response[i : i + self.chunk_size]
            for i in range(0, len(self.response), self.chunk_size)
        ]

        async def fragments() -> AsyncIterator[str]:
            for index, chunk in enumerate(chunks):
                if self.fail_after is not None and index >= self.fail_after:
                    raise LLMStreamInterruptedError("connection reset", provider="stub")
                yield chunk

        return StreamingCompletion(fragments(), provider="stub")


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test; StaticPool keeps one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> KnowledgeStore:
    return KnowledgeStore(session_factory)


@pytest.fixture
def embeddings() -> StubEmbeddings:
    return StubEmbeddings()


@pytest.fixture
def retriever(store, embeddings) -> KnowledgeRetriever:
    return KnowledgeRetriever(store, embeddings)


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def deferred() -> DeferredTaskRunner:
    return DeferredTaskRunner()


@pytest_asyncio.fixture
async def empty_workspace(store) -> str:
    """Workspace with a credential but no knowledge pairs."""
    workspace = await store.create_workspace(
        "Acme",
        {"display_name": "Acme Bot", "booking_url": "https://cal.example.com/acme"},
    )
    await store.set_default_credential(workspace.id, "anthropic", "claude-test", "sk-test")
    return workspace.id


@pytest_asyncio.fixture
async def workspace(store, embeddings, empty_workspace) -> str:
    """Workspace with two knowledge pairs and a default credential."""
    for question, answer, category in [
        (PRICING_Q, PRICING_A, "pricing"),
        (ONBOARDING_Q, ONBOARDING_A, "onboarding"),
    ]:
        await store.insert_pair(
            empty_workspace,
            question=question,
            answer=answer,
            embedding=await embeddings.embed_single(question),
            category=category,
        )
    return empty_workspace


@pytest.fixture
def orchestrator(store, retriever, llm, deferred) -> ChatOrchestrator:
    return ChatOrchestrator(
        store=store,
        retriever=retriever,
        rate_limiter=RateLimiter(max_messages=100, window_seconds=3600),
        deferred=deferred,
        llm_factory=lambda provider, api_key, model: llm,
    )
