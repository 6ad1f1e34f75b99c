"""Tests for the confidence gate and prompt assembly."""

import pytest

from grounded_chat.chat.confidence import is_grounded, top_similarity
from grounded_chat.chat.models import ConversationTurn, MatchedPair, WorkspaceSettings
from grounded_chat.chat.prompts import (
    BOOKING_HINT,
    ESCALATION_RULES,
    LOW_CONFIDENCE_GUIDANCE,
    NO_CONTEXT_MARKER,
    build_chat_messages,
    build_system_prompt,
    format_context,
)


def _match(similarity: float, question: str = "What does it cost?") -> MatchedPair:
    return MatchedPair(
        id="p1", question=question, answer="$49 a month.", category="pricing", similarity=similarity
    )


class TestConfidenceGate:
    def test_threshold_is_inclusive(self):
        assert is_grounded(0.78, 0.78) is True
        assert is_grounded(0.7799, 0.78) is False

    def test_empty_candidates_have_zero_confidence(self):
        assert top_similarity([]) == 0.0
        assert is_grounded(top_similarity([]), 0.5) is False

    def test_top_similarity_uses_first_candidate(self):
        assert top_similarity([_match(0.9), _match(0.8)]) == 0.9


class TestWorkspaceSettings:
    def test_defaults(self):
        ws = WorkspaceSettings()
        assert ws.confidence_threshold == 0.78
        assert ws.max_suggestion_chips == 3
        assert ws.escalation_enabled is True

    @pytest.mark.parametrize("threshold", [0.49, 0.96])
    def test_threshold_bounds(self, threshold):
        with pytest.raises(ValueError):
            WorkspaceSettings(confidence_threshold=threshold)


class TestPromptAssembly:
    def test_format_context_labels_and_relevance(self):
        context = format_context([_match(0.873)])
        assert "[Q1] What does it cost?" in context
        assert "[A1] $49 a month." in context
        assert "(Category: pricing, Relevance: 87%)" in context

    def test_format_context_without_matches(self):
        assert format_context([]) == NO_CONTEXT_MARKER

    def test_system_prompt_sections(self):
        ws = WorkspaceSettings(personality_prompt="You are Acme Bot.", max_suggestion_chips=4)
        prompt = build_system_prompt(ws, [_match(0.9)], grounded=True)
        assert prompt.startswith("You are Acme Bot.")
        assert "Generate exactly 4 suggestion chips" in prompt
        assert ESCALATION_RULES in prompt
        assert '"answer"' in prompt
        assert LOW_CONFIDENCE_GUIDANCE not in prompt
        assert BOOKING_HINT not in prompt

    def test_low_confidence_guidance_when_not_grounded(self):
        prompt = build_system_prompt(WorkspaceSettings(), [_match(0.6)], grounded=False)
        assert LOW_CONFIDENCE_GUIDANCE in prompt

    def test_escalation_disabled_omits_rules(self):
        ws = WorkspaceSettings(escalation_enabled=False, booking_url="https://cal.example.com")
        prompt = build_system_prompt(ws, [], grounded=False)
        assert ESCALATION_RULES not in prompt
        assert BOOKING_HINT not in prompt
        assert NO_CONTEXT_MARKER in prompt

    def test_booking_hint_with_booking_url(self):
        ws = WorkspaceSettings(booking_url="https://cal.example.com")
        assert BOOKING_HINT in build_system_prompt(ws, [], grounded=True)

    def test_history_window_keeps_last_turns_in_order(self):
        history = [
            ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}")
            for i in range(30)
        ]
        messages = build_chat_messages(
            WorkspaceSettings(), "latest question", [], history, grounded=False, history_window=20
        )
        assert messages[0].role == "system"
        assert [m.content for m in messages[1:-1]] == [f"turn {i}" for i in range(10, 30)]
        assert messages[-1].role == "user"
        assert messages[-1].content == "latest question"
