"""Confidence gate deciding whether retrieval grounds an answer."""

from grounded_chat.chat.models import MatchedPair

DEFAULT_CONFIDENCE_THRESHOLD = 0.78


def is_grounded(top_similarity: float, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> bool:
    """Grounded iff the best similarity reaches the threshold."""
    return top_similarity >= threshold


def top_similarity(matches: list[MatchedPair]) -> float:
    """Similarity of the best candidate, 0.0 when there are none."""
    return matches[0].similarity if matches else 0.0
