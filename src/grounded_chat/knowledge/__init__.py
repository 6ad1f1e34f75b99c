"""Knowledge base maintenance: adding, editing and importing Q&A pairs."""

from grounded_chat.knowledge.pairs import ImportResult, KnowledgeBase

__all__ = ["ImportResult", "KnowledgeBase"]
