"""Knowledge pair maintenance with near-duplicate protection."""

import logging
from dataclasses import dataclass, field
from typing import Any

from grounded_chat.chat.exceptions import (
    DuplicatePairError,
    PairNotFoundError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.gaps import AutoResolveResult, GapAutoResolver
from grounded_chat.config import settings
from grounded_chat.chat.models import MatchedPair
from grounded_chat.db.models import KnowledgePair
from grounded_chat.db.store import KnowledgeStore
from grounded_chat.vectorstore.embeddings import BaseEmbeddings
from grounded_chat.vectorstore.retriever import KnowledgeRetriever

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Outcome of a bulk import."""

    imported: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    auto_resolve: AutoResolveResult | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "imported": self.imported,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }
        if self.auto_resolve is not None:
            data["auto_resolve"] = self.auto_resolve.to_dict()
        return data


class KnowledgeBase:
    """Add, edit, deactivate and import knowledge pairs of a workspace."""

    def __init__(
        self,
        store: KnowledgeStore,
        embeddings: BaseEmbeddings,
        duplicate_threshold: float | None = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.retriever = KnowledgeRetriever(store, embeddings)
        self.duplicate_threshold = (
            settings.DUPLICATE_PAIR_THRESHOLD
            if duplicate_threshold is None
            else duplicate_threshold
        )

    async def _require_workspace(self, workspace_id: str) -> None:
        if await self.store.get_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)

    async def _check_duplicate(
        self, workspace_id: str, embedding: list[float], exclude_id: str | None = None
    ) -> None:
        matches = await self.retriever.retrieve_by_embedding(
            embedding, workspace_id, top_k=2, min_similarity=self.duplicate_threshold
        )
        for match in matches:
            if match.id != exclude_id:
                raise DuplicatePairError(match.id, match.similarity)

    async def add_pair(
        self,
        workspace_id: str,
        question: str,
        answer: str,
        category: str = "general",
        source: str = "manual",
    ) -> KnowledgePair:
        """Embed and insert a new pair.

        Raises:
            WorkspaceNotFoundError: If the workspace does not exist
            DuplicatePairError: If a near-identical question already exists
            ValueError: If question or answer is blank
        """
        question, answer = question.strip(), answer.strip()
        if not question or not answer:
            raise ValueError("Question and answer are required")
        await self._require_workspace(workspace_id)

        embedding = await self.embeddings.embed_single(question)
        await self._check_duplicate(workspace_id, embedding)

        pair = await self.store.insert_pair(
            workspace_id,
            question=question,
            answer=answer,
            embedding=embedding,
            category=category.strip() or "general",
            source=source,
        )
        logger.info(f"Added knowledge pair {pair.id} to workspace {workspace_id}")
        return pair

    async def update_pair(
        self,
        workspace_id: str,
        pair_id: str,
        question: str | None = None,
        answer: str | None = None,
        category: str | None = None,
        is_active: bool | None = None,
    ) -> KnowledgePair:
        """Edit a pair; a changed question gets a fresh embedding."""
        pair = await self.store.get_pair(workspace_id, pair_id)
        if pair is None:
            raise PairNotFoundError(f"Knowledge pair not found: {pair_id}")

        values: dict[str, Any] = {}
        if question is not None and question.strip() and question.strip() != pair.question:
            values["question"] = question.strip()
            embedding = await self.embeddings.embed_single(values["question"])
            await self._check_duplicate(workspace_id, embedding, exclude_id=pair_id)
            values["embedding"] = embedding
        if answer is not None and answer.strip():
            values["answer"] = answer.strip()
        if category is not None and category.strip():
            values["category"] = category.strip()
        if is_active is not None and is_active != pair.is_active:
            values["is_active"] = is_active

        if not values:
            return pair
        updated = await self.store.update_pair(workspace_id, pair_id, **values)
        logger.info(f"Updated knowledge pair {pair_id}: {sorted(values)}")
        return updated

    async def deactivate_pair(self, workspace_id: str, pair_id: str) -> KnowledgePair:
        """Soft-delete a pair so retrieval no longer returns it."""
        updated = await self.store.update_pair(workspace_id, pair_id, is_active=False)
        if updated is None:
            raise PairNotFoundError(f"Knowledge pair not found: {pair_id}")
        logger.info(f"Deactivated knowledge pair {pair_id}")
        return updated

    async def test_match(self, workspace_id: str, question: str) -> list[MatchedPair]:
        """Show which pairs a visitor question would hit, with a low floor."""
        question = question.strip()
        if not question:
            raise ValueError("Question required")
        await self._require_workspace(workspace_id)
        return await self.retriever.retrieve(
            question,
            workspace_id,
            top_k=settings.TEST_MATCH_TOP_K,
            min_similarity=settings.TEST_MATCH_MIN_SIMILARITY,
        )

    async def import_pairs(
        self,
        workspace_id: str,
        rows: list[dict[str, Any]],
        source: str = "import",
    ) -> ImportResult:
        """Insert many pairs, then try to close gaps they now answer.

        Rows without a question or answer are skipped; near-duplicates
        are counted and left out. Auto-resolution is best-effort and
        never fails the import.
        """
        await self._require_workspace(workspace_id)
        result = ImportResult()

        for index, row in enumerate(rows, start=1):
            question = str(row.get("question") or "").strip()
            answer = str(row.get("answer") or "").strip()
            if not question or not answer:
                result.skipped += 1
                result.errors.append(f"Row {index}: question and answer are required")
                continue
            try:
                await self.add_pair(
                    workspace_id,
                    question,
                    answer,
                    category=str(row.get("category") or "general"),
                    source=source,
                )
                result.imported += 1
            except DuplicatePairError as e:
                result.duplicates += 1
                logger.debug(f"Row {index} skipped: {e}")
            except Exception as e:
                logger.warning(f"Row {index} failed to import: {e}")
                result.errors.append(f"Row {index}: {e}")

        logger.info(
            f"Imported {result.imported} pairs into {workspace_id} "
            f"(skipped={result.skipped}, duplicates={result.duplicates}, "
            f"errors={len(result.errors)})"
        )

        if result.imported:
            try:
                result.auto_resolve = await GapAutoResolver(
                    self.store, self.retriever
                ).auto_resolve(workspace_id)
            except Exception as e:
                logger.error(f"Auto-resolve after import failed: {e}", exc_info=True)
        return result
