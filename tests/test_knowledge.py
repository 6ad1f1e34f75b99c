"""Tests for knowledge pair maintenance."""

from unittest.mock import AsyncMock, patch

import pytest

from grounded_chat.chat.exceptions import (
    DuplicatePairError,
    PairNotFoundError,
    WorkspaceNotFoundError,
)
from grounded_chat.db.store import GAP_RESOLVED
from grounded_chat.knowledge import KnowledgeBase

from conftest import PRICING_Q


@pytest.fixture
def kb(store, embeddings) -> KnowledgeBase:
    return KnowledgeBase(store, embeddings, duplicate_threshold=0.95)


class TestAddPair:
    @pytest.mark.asyncio
    async def test_add_pair(self, kb, store, workspace):
        pair = await kb.add_pair(workspace, "  Do you support SSO?  ", " Yes. ", category="security")
        assert pair.question == "Do you support SSO?"
        assert pair.answer == "Yes."
        assert pair.embedding_vector == [0.0, 0.0, 1.0]
        assert await store.count_active_pairs(workspace) == 3

    @pytest.mark.asyncio
    async def test_rejects_near_duplicate(self, kb, workspace):
        with pytest.raises(DuplicatePairError) as exc_info:
            await kb.add_pair(workspace, "How much is the starter plan?", "$49")
        assert exc_info.value.similarity == pytest.approx(0.96)

    @pytest.mark.asyncio
    async def test_requires_question_and_answer(self, kb, workspace):
        with pytest.raises(ValueError):
            await kb.add_pair(workspace, "   ", "answer")

    @pytest.mark.asyncio
    async def test_unknown_workspace(self, kb):
        with pytest.raises(WorkspaceNotFoundError):
            await kb.add_pair("missing", "q", "a")


class TestUpdatePair:
    @pytest.mark.asyncio
    async def test_changed_question_is_re_embedded(self, kb, store, embeddings, workspace):
        pair = await kb.add_pair(workspace, "Do you support SSO?", "Yes.")
        embeddings.vectors["is there a discount for startups?"] = [0.0, -1.0, 0.0]

        updated = await kb.update_pair(
            workspace, pair.id, question="Is there a discount for startups?"
        )
        assert updated.question == "Is there a discount for startups?"
        assert updated.embedding_vector == [0.0, -1.0, 0.0]

    @pytest.mark.asyncio
    async def test_answer_only_keeps_embedding(self, kb, embeddings, workspace):
        pair = await kb.add_pair(workspace, "Do you support SSO?", "Yes.")
        calls_before = len(embeddings.calls)
        updated = await kb.update_pair(workspace, pair.id, answer="Yes, via SAML.")
        assert updated.answer == "Yes, via SAML."
        assert len(embeddings.calls) == calls_before

    @pytest.mark.asyncio
    async def test_reactivate_pair(self, kb, store, workspace):
        pair = await kb.add_pair(workspace, "Do you support SSO?", "Yes.")
        await kb.deactivate_pair(workspace, pair.id)
        assert await store.count_active_pairs(workspace) == 2

        updated = await kb.update_pair(workspace, pair.id, is_active=True)
        assert updated.is_active is True
        assert await store.count_active_pairs(workspace) == 3

    @pytest.mark.asyncio
    async def test_missing_pair(self, kb, workspace):
        with pytest.raises(PairNotFoundError):
            await kb.update_pair(workspace, "missing", answer="x")


@pytest.mark.asyncio
async def test_deactivate_pair_hides_it_from_retrieval(kb, store, retriever, workspace):
    pricing = (await retriever.retrieve(PRICING_Q, workspace, top_k=1))[0]
    await kb.deactivate_pair(workspace, pricing.id)

    matches = await retriever.retrieve(PRICING_Q, workspace, min_similarity=0.5)
    assert pricing.id not in [m.id for m in matches]
    assert await store.count_active_pairs(workspace) == 1


class TestMatchPreview:
    @pytest.mark.asyncio
    async def test_low_floor_excludes_weaker_candidates(self, kb, workspace):
        matches = await kb.test_match(workspace, "  How much is the starter plan?  ")
        assert [m.question for m in matches] == [PRICING_Q]
        assert matches[0].similarity == pytest.approx(0.96)

    @pytest.mark.asyncio
    async def test_unrelated_question_has_no_matches(self, kb, workspace):
        assert await kb.test_match(workspace, "Do you support SSO?") == []

    @pytest.mark.asyncio
    async def test_blank_question_and_unknown_workspace(self, kb, workspace):
        with pytest.raises(ValueError):
            await kb.test_match(workspace, "   ")
        with pytest.raises(WorkspaceNotFoundError):
            await kb.test_match("no-such-workspace", "hello")


class TestImportPairs:
    @pytest.mark.asyncio
    async def test_counts_and_auto_resolves(self, kb, store, workspace):
        gap = await store.insert_gap(workspace, "Do you support SSO?", None, None, 0.0, None)
        rows = [
            {"question": "Do you support SSO?", "answer": "Yes.", "category": "security"},
            {"question": "How much is the starter plan?", "answer": "$49"},
            {"question": "", "answer": "orphan answer"},
        ]

        result = await kb.import_pairs(workspace, rows)

        assert result.imported == 1
        assert result.duplicates == 1
        assert result.skipped == 1
        assert result.errors == ["Row 3: question and answer are required"]
        assert result.auto_resolve.resolved == 1
        assert (await store.get_gap(workspace, gap.id)).status == GAP_RESOLVED

    @pytest.mark.asyncio
    async def test_auto_resolve_failure_does_not_fail_import(self, kb, workspace):
        with patch(
            "grounded_chat.knowledge.pairs.GapAutoResolver.auto_resolve",
            new=AsyncMock(side_effect=RuntimeError("embedding outage")),
        ):
            result = await kb.import_pairs(
                workspace, [{"question": "Do you support SSO?", "answer": "Yes."}]
            )
        assert result.imported == 1
        assert result.auto_resolve is None
        assert "auto_resolve" not in result.to_dict()
