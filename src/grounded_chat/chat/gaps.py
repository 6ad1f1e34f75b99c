"""Knowledge gap recording, review and automatic resolution."""

import logging
from dataclasses import dataclass, field

from grounded_chat.chat.confidence import is_grounded, top_similarity
from grounded_chat.chat.exceptions import (
    GapNotFoundError,
    GapNotOpenError,
    WorkspaceNotFoundError,
)
from grounded_chat.chat.models import MatchedPair, WorkspaceSettings
from grounded_chat.db.models import KnowledgeGap, KnowledgePair
from grounded_chat.db.store import GAP_DISMISSED, GAP_OPEN, GAP_RESOLVED, KnowledgeStore
from grounded_chat.vectorstore.embeddings import BaseEmbeddings
from grounded_chat.vectorstore.retriever import KnowledgeRetriever

logger = logging.getLogger(__name__)

RESOLUTION_MANUAL = "manual"
RESOLUTION_AUTO = "auto_matched"


def normalize_question(question: str) -> str:
    return question.strip().lower()


class GapRecorder:
    """Persist low-confidence questions for human review.

    Deduplication is exact text equality after trimming and lowercasing;
    paraphrases of the same question each get their own gap.
    """

    def __init__(self, store: KnowledgeStore):
        self.store = store

    async def record(
        self,
        workspace_id: str,
        question: str,
        ai_answer: str,
        matches: list[MatchedPair],
        session_id: str | None = None,
    ) -> KnowledgeGap | None:
        """Insert a gap unless an identical open one exists.

        Returns:
            The new gap, or None when it was a duplicate.
        """
        normalized = normalize_question(question)
        open_gaps = await self.store.list_gaps(workspace_id, status=GAP_OPEN)
        if any(normalize_question(gap.question) == normalized for gap in open_gaps):
            logger.debug(f"Open gap already exists for question: {question[:50]}")
            return None

        top = matches[0] if matches else None
        gap = await self.store.insert_gap(
            workspace_id=workspace_id,
            question=question,
            ai_answer=ai_answer,
            best_match_id=top.id if top else None,
            similarity_score=top_similarity(matches),
            session_id=session_id,
        )
        logger.info(f"Recorded knowledge gap {gap.id} for workspace {workspace_id}")
        return gap


@dataclass
class AutoResolveResult:
    """Outcome of one auto-resolve batch."""

    checked: int = 0
    resolved: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"checked": self.checked, "resolved": self.resolved, "errors": self.errors}


class GapAutoResolver:
    """Close open gaps that the current knowledge base now answers.

    Gaps are processed one at a time to stay within embedding provider
    rate limits. A failure on one gap is collected and the batch moves on.
    """

    def __init__(self, store: KnowledgeStore, retriever: KnowledgeRetriever):
        self.store = store
        self.retriever = retriever

    async def auto_resolve(self, workspace_id: str) -> AutoResolveResult:
        result = AutoResolveResult()

        workspace = await self.store.get_workspace(workspace_id)
        if workspace is None:
            result.errors.append(f"Workspace not found: {workspace_id}")
            return result
        threshold = WorkspaceSettings(**workspace.settings_dict).confidence_threshold

        try:
            gaps = await self.store.list_gaps(workspace_id, status=GAP_OPEN)
        except Exception as e:
            logger.error(f"Failed to fetch open gaps for {workspace_id}: {e}", exc_info=True)
            result.errors.append(f"Failed to fetch gaps: {e}")
            return result

        for gap in gaps:
            result.checked += 1
            try:
                matches = await self.retriever.retrieve(
                    gap.question, workspace_id, top_k=1, min_similarity=threshold
                )
                if not matches or not is_grounded(matches[0].similarity, threshold):
                    continue

                closed = await self.store.close_gap(
                    workspace_id,
                    gap.id,
                    status=GAP_RESOLVED,
                    resolved_pair_id=matches[0].id,
                    resolution_type=RESOLUTION_AUTO,
                )
                if closed:
                    result.resolved += 1
                    logger.info(
                        f"Auto-resolved gap {gap.id} with pair {matches[0].id} "
                        f"(similarity {matches[0].similarity:.3f})"
                    )
            except Exception as e:
                logger.warning(f"Error processing gap {gap.id}: {e}")
                result.errors.append(f"Error processing gap {gap.id}: {e}")

        logger.info(
            f"Auto-resolve for {workspace_id}: checked={result.checked}, "
            f"resolved={result.resolved}, errors={len(result.errors)}"
        )
        return result


class GapReviewer:
    """Human review actions on open gaps."""

    def __init__(self, store: KnowledgeStore, embeddings: BaseEmbeddings):
        self.store = store
        self.embeddings = embeddings

    async def list_gaps(self, workspace_id: str, status: str | None = GAP_OPEN) -> list[KnowledgeGap]:
        return await self.store.list_gaps(workspace_id, status=status)

    async def _require_open(self, workspace_id: str, gap_id: str) -> KnowledgeGap:
        if await self.store.get_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)
        gap = await self.store.get_gap(workspace_id, gap_id)
        if gap is None:
            raise GapNotFoundError(f"Gap not found: {gap_id}")
        if gap.status != GAP_OPEN:
            raise GapNotOpenError(f"Gap {gap_id} is already {gap.status}")
        return gap

    async def resolve(
        self,
        workspace_id: str,
        gap_id: str,
        question: str,
        answer: str,
        category: str = "general",
    ) -> tuple[KnowledgeGap, KnowledgePair]:
        """Answer a gap: create a knowledge pair and link it.

        Raises:
            GapNotFoundError: If the gap does not exist in the workspace
            GapNotOpenError: If the gap was already resolved or dismissed
        """
        await self._require_open(workspace_id, gap_id)

        embedding = await self.embeddings.embed_single(question.strip())
        pair = await self.store.insert_pair(
            workspace_id,
            question=question.strip(),
            answer=answer.strip(),
            embedding=embedding,
            category=category.strip() or "general",
            source="gap_resolution",
        )
        closed = await self.store.close_gap(
            workspace_id,
            gap_id,
            status=GAP_RESOLVED,
            resolved_pair_id=pair.id,
            resolution_type=RESOLUTION_MANUAL,
        )
        if not closed:
            # Closed concurrently; the new pair stays in the knowledge base
            raise GapNotOpenError(f"Gap {gap_id} was closed concurrently")

        logger.info(f"Resolved gap {gap_id} with new pair {pair.id}")
        return await self.store.get_gap(workspace_id, gap_id), pair

    async def dismiss(self, workspace_id: str, gap_id: str) -> KnowledgeGap:
        """Dismiss a gap without producing a knowledge pair."""
        await self._require_open(workspace_id, gap_id)
        if not await self.store.close_gap(workspace_id, gap_id, status=GAP_DISMISSED):
            raise GapNotOpenError(f"Gap {gap_id} was closed concurrently")
        logger.info(f"Dismissed gap {gap_id}")
        return await self.store.get_gap(workspace_id, gap_id)

    async def bulk_action(self, workspace_id: str, gap_ids: list[str], action: str) -> int:
        """Dismiss or delete many gaps at once.

        Dismissal only moves gaps that are still open; ids outside the
        workspace are ignored.

        Returns:
            Number of gaps affected.
        """
        if await self.store.get_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)
        if action == "dismiss":
            affected = await self.store.dismiss_gaps(workspace_id, gap_ids)
        elif action == "delete":
            affected = await self.store.delete_gaps(workspace_id, gap_ids)
        else:
            raise ValueError(f"Unknown gap action '{action}'. Available: dismiss, delete")
        logger.info(f"Bulk {action} of {affected}/{len(gap_ids)} gaps in {workspace_id}")
        return affected
