"""Tests for transcript helpers and idempotent replay lookup."""

from grounded_chat.chat.models import ConversationTurn, MatchedPair, ParsedAnswer
from grounded_chat.chat.sessions import build_turns, find_cached_reply, load_turns


def _turns() -> list[ConversationTurn]:
    return [
        ConversationTurn(role="user", content="hi", message_id="m1"),
        ConversationTurn(role="assistant", content="hello", message_id="a1"),
        ConversationTurn(role="user", content="dangling", message_id="m2"),
    ]


def test_find_cached_reply():
    assert find_cached_reply(_turns(), "m1").content == "hello"


def test_find_cached_reply_requires_following_assistant_turn():
    assert find_cached_reply(_turns(), "m2") is None


def test_find_cached_reply_without_message_id():
    assert find_cached_reply(_turns(), None) is None
    assert find_cached_reply(_turns(), "unknown") is None


def test_load_turns_without_session():
    assert load_turns(None) == []


def test_build_turns():
    parsed = ParsedAnswer(answer="A", suggestion_chips=["x"], escalation_offered=True)
    match = MatchedPair(id="p1", question="q", answer="a", category="c", similarity=0.9)
    user, assistant = build_turns("Q", "m9", parsed, [match], confidence=0.9, gap_detected=False)

    assert user.to_dict()["message_id"] == "m9"
    assert "confidence" not in user.to_dict()
    assert assistant.matched_pair_ids == ["p1"]
    assert assistant.escalation_offered is True
    assert ConversationTurn.from_dict(assistant.to_dict()) == assistant


def test_build_turns_generates_message_id():
    user, _ = build_turns("Q", None, ParsedAnswer(answer="A"), [], confidence=0.0, gap_detected=True)
    assert user.message_id
