"""Prompt assembly for grounded answers."""

from grounded_chat.chat.models import ConversationTurn, MatchedPair, WorkspaceSettings
from grounded_chat.rag.llm import LLMMessage

DEFAULT_HISTORY_WINDOW = 20

NO_CONTEXT_MARKER = "No relevant Q&A pairs found in the knowledge base."

RESPONSE_RULES = """## Response Rules
1. Answer the user's question using ONLY the knowledge base context above. Do not make up information.
2. If the context doesn't fully answer the question, be honest: provide what you can and acknowledge what you don't know.
3. Keep responses concise and conversational: 2-4 sentences for simple questions, more for complex ones."""

LOW_CONFIDENCE_GUIDANCE = """The context above is only a weak match for this question. Say clearly what the knowledge base does not cover instead of guessing."""

CHIP_RULES = """## Suggestion Chip Rules
Generate exactly {count} suggestion chips. These are NOT generic follow-ups. Each chip should do ONE of:
(a) Help the visitor clarify their specific needs
(b) Surface high-value information from the knowledge base that's related to their question
(c) Guide toward booking a call IF buying intent is present"""

ESCALATION_RULES = """## Escalation Rules
If the user shows buying intent (asking about pricing, timelines, team availability, "how do I get started", comparing options), include a booking suggestion and set escalation_offered to true."""

BOOKING_HINT = "When escalation_offered is true, naturally weave a booking suggestion into your answer."

OUTPUT_FORMAT = """## Response Format
Respond in this exact JSON format (no markdown fences, raw JSON only):
{
  "answer": "Your conversational answer here",
  "suggestion_chips": ["Strategic follow-up 1?", "Strategic follow-up 2?", "Strategic follow-up 3?"],
  "escalation_offered": false
}"""


def format_context(matches: list[MatchedPair]) -> str:
    """Render retrieved pairs as labeled question/answer blocks."""
    if not matches:
        return NO_CONTEXT_MARKER
    blocks = []
    for i, match in enumerate(matches, start=1):
        blocks.append(
            f"[Q{i}] {match.question}\n"
            f"[A{i}] {match.answer}\n"
            f"(Category: {match.category}, Relevance: {match.similarity * 100:.0f}%)"
        )
    return "\n\n".join(blocks)


def build_system_prompt(
    workspace: WorkspaceSettings,
    matches: list[MatchedPair],
    grounded: bool = True,
) -> str:
    sections = [
        workspace.personality_prompt.strip(),
        f"## Knowledge Base Context\n{format_context(matches)}",
        RESPONSE_RULES,
    ]
    if not grounded and matches:
        sections.append(LOW_CONFIDENCE_GUIDANCE)
    sections.append(CHIP_RULES.format(count=workspace.max_suggestion_chips))
    if workspace.escalation_enabled:
        sections.append(ESCALATION_RULES)
    sections.append(OUTPUT_FORMAT)
    if workspace.escalation_enabled and workspace.booking_url:
        sections.append(BOOKING_HINT)
    return "\n\n".join(s for s in sections if s)


def build_chat_messages(
    workspace: WorkspaceSettings,
    user_message: str,
    matches: list[MatchedPair],
    history: list[ConversationTurn],
    grounded: bool = True,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> list[LLMMessage]:
    """Build the message list sent to the generation model.

    Only the last `history_window` prior turns are included, oldest
    first, followed by the current user message.
    """
    messages = [LLMMessage(role="system", content=build_system_prompt(workspace, matches, grounded))]
    recent = history[-history_window:] if history_window > 0 else []
    for turn in recent:
        messages.append(LLMMessage(role=turn.role, content=turn.content))
    messages.append(LLMMessage(role="user", content=user_message))
    return messages
