"""Knowledge retriever: embed a query and rank knowledge pairs by similarity."""

import logging

from grounded_chat.chat.models import MatchedPair
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.vectorstore.embeddings import BaseEmbeddings, get_embeddings

logger = logging.getLogger(__name__)


class KnowledgeRetriever:
    """Retrieves knowledge pairs using vector similarity search."""

    def __init__(
        self,
        store: KnowledgeStore,
        embeddings: BaseEmbeddings | None = None,
    ):
        """Initialize the retriever.

        Args:
            store: Knowledge store performing the similarity search
            embeddings: Embeddings provider (defaults to configured provider)
        """
        self.store = store
        self.embeddings = embeddings or get_embeddings()

    async def retrieve(
        self,
        query: str,
        workspace_id: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[MatchedPair]:
        """Search active pairs of a workspace for the query.

        Args:
            query: Visitor question
            workspace_id: Workspace whose knowledge base is searched
            top_k: Maximum number of candidates
            min_similarity: Floor below which candidates are dropped

        Returns:
            Candidates ordered by descending similarity; empty when nothing
            clears the floor.
        """
        query_embedding = await self.embeddings.embed_single(query)
        return await self.retrieve_by_embedding(
            query_embedding, workspace_id, top_k=top_k, min_similarity=min_similarity
        )

    async def retrieve_by_embedding(
        self,
        query_embedding: list[float],
        workspace_id: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[MatchedPair]:
        """Search with a precomputed embedding."""
        results = await self.store.search_pairs(
            workspace_id, query_embedding, top_k=top_k, min_similarity=min_similarity
        )
        matches = [
            MatchedPair(
                id=pair.id,
                question=pair.question,
                answer=pair.answer,
                category=pair.category,
                similarity=score,
            )
            for pair, score in results
        ]
        logger.debug(
            f"Retrieved {len(matches)} candidates for workspace {workspace_id} "
            f"(top similarity {matches[0].similarity if matches else 0.0:.3f})"
        )
        return matches
