"""Shared service instances for the API routes.

Routes receive these through FastAPI dependencies so tests can swap them
with `app.dependency_overrides`.
"""

from functools import lru_cache

from grounded_chat.chat.deferred import DeferredTaskRunner
from grounded_chat.chat.gaps import GapAutoResolver, GapReviewer
from grounded_chat.chat.orchestrator import ChatOrchestrator
from grounded_chat.chat.rate_limiter import get_rate_limiter
from grounded_chat.chat.summarizer import ConversationSummarizer
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.knowledge.pairs import KnowledgeBase
from grounded_chat.vectorstore.embeddings import BaseEmbeddings, get_embeddings
from grounded_chat.vectorstore.retriever import KnowledgeRetriever


@lru_cache
def get_store() -> KnowledgeStore:
    return KnowledgeStore()


@lru_cache
def get_embeddings_client() -> BaseEmbeddings:
    return get_embeddings()


@lru_cache
def get_deferred_runner() -> DeferredTaskRunner:
    return DeferredTaskRunner()


@lru_cache
def get_orchestrator() -> ChatOrchestrator:
    store = get_store()
    return ChatOrchestrator(
        store=store,
        retriever=KnowledgeRetriever(store, get_embeddings_client()),
        rate_limiter=get_rate_limiter(),
        deferred=get_deferred_runner(),
    )


def get_gap_reviewer() -> GapReviewer:
    return GapReviewer(get_store(), get_embeddings_client())


def get_auto_resolver() -> GapAutoResolver:
    store = get_store()
    return GapAutoResolver(store, KnowledgeRetriever(store, get_embeddings_client()))


def get_summarizer() -> ConversationSummarizer:
    return ConversationSummarizer(get_store())


def get_knowledge_base() -> KnowledgeBase:
    return KnowledgeBase(get_store(), get_embeddings_client())
