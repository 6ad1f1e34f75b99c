"""Tests for gap recording, review and auto-resolution."""

from unittest.mock import AsyncMock

import pytest

from grounded_chat.chat.exceptions import GapNotFoundError, GapNotOpenError, WorkspaceNotFoundError
from grounded_chat.chat.gaps import (
    RESOLUTION_AUTO,
    RESOLUTION_MANUAL,
    GapAutoResolver,
    GapRecorder,
    GapReviewer,
    normalize_question,
)
from grounded_chat.chat.models import MatchedPair
from grounded_chat.db.store import GAP_DISMISSED, GAP_OPEN, GAP_RESOLVED

from conftest import PRICING_Q


def test_normalize_question():
    assert normalize_question("  Do You Support SSO?  ") == "do you support sso?"


class TestGapRecorder:
    @pytest.mark.asyncio
    async def test_records_best_match(self, store, workspace):
        match = MatchedPair(id="p1", question="q", answer="a", category="c", similarity=0.6)
        gap = await GapRecorder(store).record(
            workspace, "Is there a discount?", "Not sure.", [match], session_id="s1"
        )
        assert gap.status == GAP_OPEN
        assert gap.best_match_id == "p1"
        assert gap.similarity_score == pytest.approx(0.6)
        assert gap.session_id == "s1"

    @pytest.mark.asyncio
    async def test_deduplicates_open_gaps_case_insensitively(self, store, workspace):
        recorder = GapRecorder(store)
        assert await recorder.record(workspace, "Do you support SSO?", "?", []) is not None
        assert await recorder.record(workspace, "  do you support sso?  ", "?", []) is None
        assert len(await store.list_gaps(workspace)) == 1

    @pytest.mark.asyncio
    async def test_paraphrases_are_separate_gaps(self, store, workspace):
        recorder = GapRecorder(store)
        await recorder.record(workspace, "Do you support SSO?", "?", [])
        await recorder.record(workspace, "Is SSO supported?", "?", [])
        assert len(await store.list_gaps(workspace)) == 2

    @pytest.mark.asyncio
    async def test_closed_gap_does_not_block_new_one(self, store, workspace):
        recorder = GapRecorder(store)
        gap = await recorder.record(workspace, "Do you support SSO?", "?", [])
        await store.close_gap(workspace, gap.id, status=GAP_DISMISSED)
        assert await recorder.record(workspace, "Do you support SSO?", "?", []) is not None


class TestGapAutoResolver:
    @pytest.mark.asyncio
    async def test_resolves_answered_gaps_only(self, store, retriever, workspace):
        answered = await store.insert_gap(
            workspace, "How much is the starter plan?", None, None, 0.4, None
        )
        unanswered = await store.insert_gap(workspace, "Do you support SSO?", None, None, 0.0, None)

        result = await GapAutoResolver(store, retriever).auto_resolve(workspace)

        assert result.to_dict() == {"checked": 2, "resolved": 1, "errors": []}
        closed = await store.get_gap(workspace, answered.id)
        assert closed.status == GAP_RESOLVED
        assert closed.resolution_type == RESOLUTION_AUTO
        pricing = (await retriever.retrieve(PRICING_Q, workspace, top_k=1))[0]
        assert closed.resolved_pair_id == pricing.id
        assert (await store.get_gap(workspace, unanswered.id)).status == GAP_OPEN

    @pytest.mark.asyncio
    async def test_uses_workspace_threshold(self, store, retriever, embeddings, workspace):
        """A 0.6 match closes the gap only where the workspace threshold allows it."""
        lenient = await store.create_workspace("Lenient", {"confidence_threshold": 0.5})
        await store.insert_pair(
            lenient.id, PRICING_Q, "a", await embeddings.embed_single(PRICING_Q)
        )
        question = "Is there a discount for startups?"
        await store.insert_gap(workspace, question, None, None, None, None)
        await store.insert_gap(lenient.id, question, None, None, None, None)

        resolver = GapAutoResolver(store, retriever)
        assert (await resolver.auto_resolve(workspace)).resolved == 0
        assert (await resolver.auto_resolve(lenient.id)).resolved == 1

    @pytest.mark.asyncio
    async def test_per_gap_errors_do_not_abort(self, store, retriever, workspace):
        await store.insert_gap(workspace, "first", None, None, None, None)
        await store.insert_gap(workspace, "How much is the starter plan?", None, None, None, None)

        matches = await retriever.retrieve("How much is the starter plan?", workspace, top_k=1)
        retriever.retrieve = AsyncMock(side_effect=[RuntimeError("embedding down"), matches])

        result = await GapAutoResolver(store, retriever).auto_resolve(workspace)
        assert result.checked == 2
        assert result.resolved == 1
        assert len(result.errors) == 1
        assert "embedding down" in result.errors[0]

    @pytest.mark.asyncio
    async def test_unknown_workspace(self, store, retriever):
        result = await GapAutoResolver(store, retriever).auto_resolve("missing")
        assert result.checked == 0
        assert result.errors


class TestGapReviewer:
    @pytest.mark.asyncio
    async def test_resolve_creates_linked_pair(self, store, embeddings, workspace):
        gap = await store.insert_gap(workspace, "Do you support SSO?", "?", None, 0.0, None)
        reviewer = GapReviewer(store, embeddings)

        resolved, pair = await reviewer.resolve(
            workspace, gap.id, "Do you support SSO?", "Yes, via SAML.", "security"
        )

        assert resolved.status == GAP_RESOLVED
        assert resolved.resolved_pair_id == pair.id
        assert resolved.resolution_type == RESOLUTION_MANUAL
        assert pair.source == "gap_resolution"
        assert await store.count_active_pairs(workspace) == 3

    @pytest.mark.asyncio
    async def test_terminal_states_do_not_transition(self, store, embeddings, workspace):
        gap = await store.insert_gap(workspace, "q", None, None, None, None)
        reviewer = GapReviewer(store, embeddings)
        dismissed = await reviewer.dismiss(workspace, gap.id)
        assert dismissed.status == GAP_DISMISSED
        assert dismissed.resolved_pair_id is None

        with pytest.raises(GapNotOpenError):
            await reviewer.resolve(workspace, gap.id, "q", "a")
        with pytest.raises(GapNotOpenError):
            await reviewer.dismiss(workspace, gap.id)

    @pytest.mark.asyncio
    async def test_missing_gap_and_workspace(self, store, embeddings, workspace):
        reviewer = GapReviewer(store, embeddings)
        with pytest.raises(GapNotFoundError):
            await reviewer.dismiss(workspace, "missing")
        with pytest.raises(WorkspaceNotFoundError):
            await reviewer.dismiss("no-such-workspace", "missing")

    @pytest.mark.asyncio
    async def test_bulk_dismiss_and_delete(self, store, embeddings, workspace):
        reviewer = GapReviewer(store, embeddings)
        first = await store.insert_gap(workspace, "one", None, None, None, None)
        second = await store.insert_gap(workspace, "two", None, None, None, None)

        assert await reviewer.bulk_action(workspace, [first.id], "dismiss") == 1
        assert [g.id for g in await reviewer.list_gaps(workspace)] == [second.id]

        assert await reviewer.bulk_action(workspace, [first.id, second.id], "delete") == 2
        assert await reviewer.list_gaps(workspace, status=None) == []

    @pytest.mark.asyncio
    async def test_bulk_rejects_unknown_action_and_workspace(self, store, embeddings, workspace):
        reviewer = GapReviewer(store, embeddings)
        with pytest.raises(ValueError):
            await reviewer.bulk_action(workspace, ["x"], "archive")
        with pytest.raises(WorkspaceNotFoundError):
            await reviewer.bulk_action("no-such-workspace", ["x"], "dismiss")
