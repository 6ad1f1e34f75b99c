"""Knowledge store: every database read and write the chat engine performs.

Each method runs in its own session and commits on its own; no
transaction spans two store calls.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any

import numpy as np
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grounded_chat.db.database import async_session_maker
from grounded_chat.db.models import (
    ApiKey,
    ChatSession,
    KnowledgeGap,
    KnowledgePair,
    Workspace,
)

logger = logging.getLogger(__name__)

GAP_OPEN = "open"
GAP_RESOLVED = "resolved"
GAP_DISMISSED = "dismissed"


def _insert_for(dialect_name: str):
    """Return the dialect-specific insert() supporting ON CONFLICT."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


def _cosine_similarities(query: list[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query vector against each row of a matrix."""
    q = np.asarray(query, dtype=float)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, matrix @ q / denom, 0.0)
    return sims


class KnowledgeStore:
    """Async store for workspaces, knowledge pairs, sessions and gaps."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session_maker

    # ------------------------------------------------------------------
    # Workspaces and credentials
    # ------------------------------------------------------------------

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        async with self.session_factory() as session:
            return await session.get(Workspace, workspace_id)

    async def create_workspace(
        self, name: str, settings: dict[str, Any] | None = None
    ) -> Workspace:
        async with self.session_factory() as session:
            workspace = Workspace(
                id=str(uuid.uuid4()), name=name, settings=json.dumps(settings or {})
            )
            session.add(workspace)
            await session.commit()
            return workspace

    async def get_default_credential(self, workspace_id: str) -> ApiKey | None:
        """Get the active default generation credential for a workspace."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiKey)
                .where(
                    ApiKey.workspace_id == workspace_id,
                    ApiKey.is_default.is_(True),
                    ApiKey.is_active.is_(True),
                )
                .order_by(ApiKey.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def set_default_credential(
        self, workspace_id: str, provider: str, model: str, api_key: str
    ) -> ApiKey:
        """Store a credential and make it the workspace default."""
        async with self.session_factory() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.workspace_id == workspace_id)
                .values(is_default=False)
            )
            key = ApiKey(
                workspace_id=workspace_id,
                provider=provider,
                model=model,
                api_key=api_key,
                is_default=True,
                is_active=True,
            )
            session.add(key)
            await session.commit()
            return key

    # ------------------------------------------------------------------
    # Knowledge pairs
    # ------------------------------------------------------------------

    async def count_active_pairs(self, workspace_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(KnowledgePair.id)).where(
                    KnowledgePair.workspace_id == workspace_id,
                    KnowledgePair.is_active.is_(True),
                )
            )
            return int(result.scalar_one())

    async def search_pairs(
        self,
        workspace_id: str,
        query_embedding: list[float],
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[tuple[KnowledgePair, float]]:
        """Similarity search over active pairs of one workspace.

        Returns:
            (pair, similarity) tuples, highest similarity first. Ties keep
            creation order.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(KnowledgePair)
                .where(
                    KnowledgePair.workspace_id == workspace_id,
                    KnowledgePair.is_active.is_(True),
                )
                .order_by(KnowledgePair.created_at, KnowledgePair.id)
            )
            pairs = list(result.scalars().all())

        candidates = []
        vectors = []
        for pair in pairs:
            vector = pair.embedding_vector
            if len(vector) != len(query_embedding):
                logger.warning(
                    f"Skipping pair {pair.id}: embedding dimension {len(vector)} "
                    f"!= query dimension {len(query_embedding)}"
                )
                continue
            candidates.append(pair)
            vectors.append(vector)

        if not candidates:
            return []

        sims = _cosine_similarities(query_embedding, np.asarray(vectors, dtype=float))
        # Stable sort keeps creation order between equal scores
        order = np.argsort(-sims, kind="stable")

        matches = []
        for idx in order:
            score = float(sims[idx])
            if score < min_similarity:
                break
            matches.append((candidates[idx], score))
            if len(matches) >= top_k:
                break
        return matches

    async def insert_pair(
        self,
        workspace_id: str,
        question: str,
        answer: str,
        embedding: list[float],
        category: str = "general",
        source: str = "manual",
    ) -> KnowledgePair:
        async with self.session_factory() as session:
            pair = KnowledgePair(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                question=question,
                answer=answer,
                category=category,
                source=source,
                embedding=json.dumps(embedding),
                is_active=True,
            )
            session.add(pair)
            await session.commit()
            return pair

    async def get_pair(self, workspace_id: str, pair_id: str) -> KnowledgePair | None:
        async with self.session_factory() as session:
            pair = await session.get(KnowledgePair, pair_id)
            if pair is None or pair.workspace_id != workspace_id:
                return None
            return pair

    async def update_pair(
        self, workspace_id: str, pair_id: str, **values: Any
    ) -> KnowledgePair | None:
        """Update columns of a pair; an `embedding` list is serialized."""
        if "embedding" in values and not isinstance(values["embedding"], str):
            values["embedding"] = json.dumps(values["embedding"])

        async with self.session_factory() as session:
            pair = await session.get(KnowledgePair, pair_id)
            if pair is None or pair.workspace_id != workspace_id:
                return None
            for key, value in values.items():
                setattr(pair, key, value)
            await session.commit()
            return pair

    # ------------------------------------------------------------------
    # Chat sessions
    # ------------------------------------------------------------------

    async def get_session_by_token(
        self, workspace_id: str, conversation_token: str
    ) -> ChatSession | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ChatSession).where(
                    ChatSession.workspace_id == workspace_id,
                    ChatSession.conversation_token == conversation_token,
                )
            )
            return result.scalar_one_or_none()

    async def get_session(self, workspace_id: str, session_id: str) -> ChatSession | None:
        async with self.session_factory() as session:
            chat_session = await session.get(ChatSession, session_id)
            if chat_session is None or chat_session.workspace_id != workspace_id:
                return None
            return chat_session

    async def upsert_session(
        self,
        workspace_id: str,
        conversation_token: str,
        turns: list[dict[str, Any]],
        escalated: bool,
    ) -> ChatSession:
        """Insert or replace the transcript for (workspace, token).

        The turn list is replaced wholesale. `escalated` is OR-ed with the
        stored value and `escalated_at` keeps its first value, both inside
        the same statement.
        """
        async with self.session_factory() as session:
            insert = _insert_for(session.bind.dialect.name)
            stmt = insert(ChatSession).values(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                conversation_token=conversation_token,
                turns=json.dumps(turns),
                escalated=escalated,
                escalated_at=datetime.utcnow() if escalated else None,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["workspace_id", "conversation_token"],
                set_={
                    "turns": stmt.excluded.turns,
                    "escalated": or_(ChatSession.escalated, stmt.excluded.escalated),
                    "escalated_at": func.coalesce(
                        ChatSession.escalated_at, stmt.excluded.escalated_at
                    ),
                    "updated_at": func.now(),
                },
            )
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(ChatSession)
                .where(
                    ChatSession.workspace_id == workspace_id,
                    ChatSession.conversation_token == conversation_token,
                )
                .execution_options(populate_existing=True)
            )
            return result.scalar_one()

    async def list_sessions(self, workspace_id: str, limit: int = 100) -> list[ChatSession]:
        """Sessions of a workspace, most recently updated first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ChatSession)
                .where(ChatSession.workspace_id == workspace_id)
                .order_by(ChatSession.updated_at.desc(), ChatSession.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_session_metadata(
        self, workspace_id: str, session_id: str, metadata: dict[str, Any]
    ) -> None:
        """Merge keys into a session's metadata."""
        async with self.session_factory() as session:
            chat_session = await session.get(ChatSession, session_id)
            if chat_session is None or chat_session.workspace_id != workspace_id:
                return
            merged = chat_session.metadata_dict
            merged.update(metadata)
            chat_session.session_metadata = json.dumps(merged)
            await session.commit()

    # ------------------------------------------------------------------
    # Knowledge gaps
    # ------------------------------------------------------------------

    async def list_gaps(
        self, workspace_id: str, status: str | None = GAP_OPEN
    ) -> list[KnowledgeGap]:
        async with self.session_factory() as session:
            query = select(KnowledgeGap).where(KnowledgeGap.workspace_id == workspace_id)
            if status:
                query = query.where(KnowledgeGap.status == status)
            result = await session.execute(
                query.order_by(KnowledgeGap.created_at, KnowledgeGap.id)
            )
            return list(result.scalars().all())

    async def get_gap(self, workspace_id: str, gap_id: str) -> KnowledgeGap | None:
        async with self.session_factory() as session:
            gap = await session.get(KnowledgeGap, gap_id)
            if gap is None or gap.workspace_id != workspace_id:
                return None
            return gap

    async def insert_gap(
        self,
        workspace_id: str,
        question: str,
        ai_answer: str | None,
        best_match_id: str | None,
        similarity_score: float | None,
        session_id: str | None,
    ) -> KnowledgeGap:
        async with self.session_factory() as session:
            gap = KnowledgeGap(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                question=question,
                ai_answer=ai_answer,
                best_match_id=best_match_id,
                similarity_score=similarity_score,
                session_id=session_id,
                status=GAP_OPEN,
            )
            session.add(gap)
            await session.commit()
            return gap

    async def close_gap(
        self,
        workspace_id: str,
        gap_id: str,
        status: str,
        resolved_pair_id: str | None = None,
        resolution_type: str | None = None,
    ) -> bool:
        """Move an open gap to a terminal status.

        Returns:
            False when the gap is missing or no longer open.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(KnowledgeGap)
                .where(
                    KnowledgeGap.id == gap_id,
                    KnowledgeGap.workspace_id == workspace_id,
                    KnowledgeGap.status == GAP_OPEN,
                )
                .values(
                    status=status,
                    resolved_pair_id=resolved_pair_id,
                    resolution_type=resolution_type,
                    resolved_at=datetime.utcnow(),
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def dismiss_gaps(self, workspace_id: str, gap_ids: list[str]) -> int:
        """Dismiss the listed gaps that are still open; returns how many moved."""
        if not gap_ids:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(
                update(KnowledgeGap)
                .where(
                    KnowledgeGap.id.in_(gap_ids),
                    KnowledgeGap.workspace_id == workspace_id,
                    KnowledgeGap.status == GAP_OPEN,
                )
                .values(status=GAP_DISMISSED, resolved_at=datetime.utcnow())
            )
            await session.commit()
            return result.rowcount

    async def delete_gaps(self, workspace_id: str, gap_ids: list[str]) -> int:
        if not gap_ids:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(
                delete(KnowledgeGap).where(
                    KnowledgeGap.id.in_(gap_ids),
                    KnowledgeGap.workspace_id == workspace_id,
                )
            )
            await session.commit()
            return result.rowcount
