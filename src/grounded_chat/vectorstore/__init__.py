"""Embeddings and similarity retrieval over the knowledge base."""

from grounded_chat.vectorstore.embeddings import (
    BaseEmbeddings,
    OllamaEmbeddings,
    OpenAIEmbeddings,
    SentenceTransformerEmbeddings,
    get_embeddings,
)
from grounded_chat.vectorstore.retriever import KnowledgeRetriever

__all__ = [
    "BaseEmbeddings",
    "OpenAIEmbeddings",
    "OllamaEmbeddings",
    "SentenceTransformerEmbeddings",
    "get_embeddings",
    "KnowledgeRetriever",
]
