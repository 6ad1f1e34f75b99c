"""CLI commands for the grounded chat engine."""

import asyncio
import json
import logging
import re
import sys

import click

from grounded_chat.config import settings


class SecretRedactingFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    # Patterns for common secrets
    SECRET_PATTERNS = [
        (re.compile(r"(api[_-]?key[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(x-api-key[\s:=]+)[\w-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(token[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(bearer\s+)[\w-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"\bsk-[\w-]{16,}"), "[REDACTED]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log messages."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.SECRET_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


# Configure logging with secret redaction
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger().addFilter(SecretRedactingFilter())
logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Grounded Chat CLI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command()
def init_database() -> None:
    """Initialize the database schema."""
    asyncio.run(_init_database())


async def _init_database() -> None:
    from grounded_chat.db.database import init_db

    await init_db()
    click.echo("Database initialized successfully!")


# =============================================================================
# WORKSPACE COMMANDS
# =============================================================================


@cli.command()
@click.argument("name")
@click.option("--display-name", help="Name the assistant introduces itself with")
@click.option("--threshold", type=float, help="Confidence threshold (0.5-0.95)")
@click.option("--booking-url", help="Booking link offered on escalation")
def create_workspace(
    name: str, display_name: str | None, threshold: float | None, booking_url: str | None
) -> None:
    """Create a workspace and print its id."""
    asyncio.run(_create_workspace(name, display_name, threshold, booking_url))


async def _create_workspace(
    name: str, display_name: str | None, threshold: float | None, booking_url: str | None
) -> None:
    from pydantic import ValidationError

    from grounded_chat.chat.models import WorkspaceSettings
    from grounded_chat.db.database import init_db
    from grounded_chat.db.store import KnowledgeStore

    values = {"display_name": display_name or name}
    if threshold is not None:
        values["confidence_threshold"] = threshold
    if booking_url:
        values["booking_url"] = booking_url
    try:
        workspace_settings = WorkspaceSettings(**values)
    except ValidationError as e:
        click.echo(f"Error: invalid workspace settings: {e}", err=True)
        sys.exit(1)

    await init_db()
    workspace = await KnowledgeStore().create_workspace(
        name, workspace_settings.model_dump(exclude_none=True)
    )
    click.echo(f"Created workspace {workspace.id}")


@cli.command()
@click.argument("workspace_id")
@click.option(
    "--provider",
    "-p",
    type=click.Choice(["anthropic", "openai", "ollama"]),
    default="anthropic",
    help="Generation provider",
)
@click.option("--model", "-m", default="", help="Model identifier (provider default if empty)")
@click.option("--api-key", prompt=True, hide_input=True, help="Provider API key")
def set_api_key(workspace_id: str, provider: str, model: str, api_key: str) -> None:
    """Store the default generation credential for a workspace."""
    asyncio.run(_set_api_key(workspace_id, provider, model, api_key))


async def _set_api_key(workspace_id: str, provider: str, model: str, api_key: str) -> None:
    from grounded_chat.db.store import KnowledgeStore

    store = KnowledgeStore()
    if await store.get_workspace(workspace_id) is None:
        click.echo(f"Error: workspace not found: {workspace_id}", err=True)
        sys.exit(1)
    await store.set_default_credential(workspace_id, provider, model, api_key)
    click.echo(f"Default {provider} credential set for workspace {workspace_id}")


# =============================================================================
# KNOWLEDGE BASE COMMANDS
# =============================================================================


@cli.command()
@click.argument("workspace_id")
@click.option("--question", "-q", required=True, help="Question text")
@click.option("--answer", "-a", required=True, help="Answer text")
@click.option("--category", "-c", default="general", help="Category")
def add_pair(workspace_id: str, question: str, answer: str, category: str) -> None:
    """Add one Q&A pair to a workspace knowledge base."""
    asyncio.run(_add_pair(workspace_id, question, answer, category))


async def _add_pair(workspace_id: str, question: str, answer: str, category: str) -> None:
    from grounded_chat.chat.exceptions import ChatError
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.knowledge import KnowledgeBase
    from grounded_chat.vectorstore import get_embeddings

    kb = KnowledgeBase(KnowledgeStore(), get_embeddings())
    try:
        pair = await kb.add_pair(workspace_id, question, answer, category=category)
    except (ChatError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Added pair {pair.id}")


@cli.command()
@click.argument("workspace_id")
@click.argument("pair_id")
@click.option("--question", "-q", help="New question text")
@click.option("--answer", "-a", help="New answer text")
@click.option("--category", "-c", help="New category")
@click.option("--active/--inactive", "is_active", default=None, help="Activate or deactivate")
def update_pair(
    workspace_id: str,
    pair_id: str,
    question: str | None,
    answer: str | None,
    category: str | None,
    is_active: bool | None,
) -> None:
    """Edit a Q&A pair; a changed question is re-embedded."""
    asyncio.run(_update_pair(workspace_id, pair_id, question, answer, category, is_active))


async def _update_pair(
    workspace_id: str,
    pair_id: str,
    question: str | None,
    answer: str | None,
    category: str | None,
    is_active: bool | None,
) -> None:
    from grounded_chat.chat.exceptions import ChatError
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.knowledge import KnowledgeBase
    from grounded_chat.vectorstore import get_embeddings

    kb = KnowledgeBase(KnowledgeStore(), get_embeddings())
    try:
        pair = await kb.update_pair(
            workspace_id,
            pair_id,
            question=question,
            answer=answer,
            category=category,
            is_active=is_active,
        )
    except ChatError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Updated pair {pair.id} ({'active' if pair.is_active else 'inactive'})")


@cli.command()
@click.argument("workspace_id")
@click.argument("pair_id")
def deactivate_pair(workspace_id: str, pair_id: str) -> None:
    """Stop a Q&A pair from being retrieved."""
    asyncio.run(_deactivate_pair(workspace_id, pair_id))


async def _deactivate_pair(workspace_id: str, pair_id: str) -> None:
    from grounded_chat.chat.exceptions import PairNotFoundError
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.knowledge import KnowledgeBase
    from grounded_chat.vectorstore import get_embeddings

    kb = KnowledgeBase(KnowledgeStore(), get_embeddings())
    try:
        await kb.deactivate_pair(workspace_id, pair_id)
    except PairNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Deactivated pair {pair_id}")


@cli.command()
@click.argument("workspace_id")
@click.argument("question")
def test_match(workspace_id: str, question: str) -> None:
    """Show which pairs a question matches, including weak matches."""
    asyncio.run(_test_match(workspace_id, question))


async def _test_match(workspace_id: str, question: str) -> None:
    from grounded_chat.chat.exceptions import WorkspaceNotFoundError
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.knowledge import KnowledgeBase
    from grounded_chat.vectorstore import get_embeddings

    kb = KnowledgeBase(KnowledgeStore(), get_embeddings())
    try:
        matches = await kb.test_match(workspace_id, question)
    except (WorkspaceNotFoundError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not matches:
        click.echo("No matches above the test floor.")
        return
    for i, match in enumerate(matches, 1):
        click.echo(f"{i}. [{match.similarity:.3f}] {match.question}")
        click.echo(f"   {match.answer[:120]}")


@cli.command()
@click.argument("workspace_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_pairs(workspace_id: str, path: str) -> None:
    """Import Q&A pairs from a JSON file (a list of {question, answer, category})."""
    asyncio.run(_import_pairs(workspace_id, path))


async def _import_pairs(workspace_id: str, path: str) -> None:
    from grounded_chat.chat.exceptions import WorkspaceNotFoundError
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.knowledge import KnowledgeBase
    from grounded_chat.vectorstore import get_embeddings

    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        click.echo("Error: expected a JSON list of pairs", err=True)
        sys.exit(1)

    kb = KnowledgeBase(KnowledgeStore(), get_embeddings())
    try:
        result = await kb.import_pairs(workspace_id, rows)
    except WorkspaceNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"\nImport complete!")
    click.echo(f"  Imported: {result.imported}")
    click.echo(f"  Skipped: {result.skipped}")
    click.echo(f"  Duplicates: {result.duplicates}")
    click.echo(f"  Errors: {len(result.errors)}")
    for error in result.errors[:10]:
        click.echo(f"    - {error}")
    if result.auto_resolve is not None:
        click.echo(f"  Gaps auto-resolved: {result.auto_resolve.resolved}")


# =============================================================================
# KNOWLEDGE GAP COMMANDS
# =============================================================================


@cli.command()
@click.argument("workspace_id")
@click.option(
    "--status",
    "-s",
    type=click.Choice(["open", "resolved", "dismissed", "all"]),
    default="open",
    help="Gap status to list",
)
def list_gaps(workspace_id: str, status: str) -> None:
    """List knowledge gaps of a workspace."""
    asyncio.run(_list_gaps(workspace_id, status))


async def _list_gaps(workspace_id: str, status: str) -> None:
    from grounded_chat.db.store import KnowledgeStore

    gaps = await KnowledgeStore().list_gaps(workspace_id, status=None if status == "all" else status)
    if not gaps:
        click.echo("No gaps found.")
        return

    click.echo(f"\n{'=' * 60}")
    click.echo(f"KNOWLEDGE GAPS ({len(gaps)})")
    click.echo(f"{'=' * 60}")
    for gap in gaps:
        score = f"{gap.similarity_score:.2f}" if gap.similarity_score is not None else "-"
        click.echo(f"\n[{gap.status}] {gap.id}")
        click.echo(f"  Question: {gap.question[:100]}")
        click.echo(f"  Best match score: {score}")


@cli.command()
@click.argument("workspace_id")
def auto_resolve_gaps(workspace_id: str) -> None:
    """Close open gaps that the knowledge base now answers."""
    asyncio.run(_auto_resolve_gaps(workspace_id))


async def _auto_resolve_gaps(workspace_id: str) -> None:
    from grounded_chat.chat.gaps import GapAutoResolver
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.vectorstore import KnowledgeRetriever

    store = KnowledgeStore()
    result = await GapAutoResolver(store, KnowledgeRetriever(store)).auto_resolve(workspace_id)
    click.echo(f"Checked: {result.checked}")
    click.echo(f"Resolved: {result.resolved}")
    for error in result.errors:
        click.echo(f"  Error: {error}", err=True)


# =============================================================================
# SESSION COMMANDS
# =============================================================================


@cli.command()
@click.argument("workspace_id")
@click.option("--limit", "-n", type=int, default=20, help="Number of sessions to show")
def list_sessions(workspace_id: str, limit: int) -> None:
    """List recent conversations of a workspace."""
    asyncio.run(_list_sessions(workspace_id, limit))


async def _list_sessions(workspace_id: str, limit: int) -> None:
    from grounded_chat.db.store import KnowledgeStore

    sessions = await KnowledgeStore().list_sessions(workspace_id, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return
    for chat_session in sessions:
        flag = " [escalated]" if chat_session.escalated else ""
        click.echo(
            f"{chat_session.id}  {len(chat_session.turn_list)} messages  "
            f"updated {chat_session.updated_at}{flag}"
        )


@cli.command()
@click.argument("workspace_id")
@click.argument("session_id")
def show_session(workspace_id: str, session_id: str) -> None:
    """Print the transcript of one conversation."""
    asyncio.run(_show_session(workspace_id, session_id))


async def _show_session(workspace_id: str, session_id: str) -> None:
    from grounded_chat.db.store import KnowledgeStore

    chat_session = await KnowledgeStore().get_session(workspace_id, session_id)
    if chat_session is None:
        click.echo(f"Error: session not found: {session_id}", err=True)
        sys.exit(1)
    for turn in chat_session.turn_list:
        label = "Visitor" if turn.get("role") == "user" else "Assistant"
        click.echo(f"{label}: {turn.get('content', '')}")


# =============================================================================
# CHAT COMMANDS
# =============================================================================


@cli.command()
@click.argument("workspace_id")
@click.argument("message")
@click.option("--token", "-t", default="cli", help="Conversation token")
@click.option("--stream", "-s", "use_stream", is_flag=True, help="Print the answer as it streams")
def ask(workspace_id: str, message: str, token: str, use_stream: bool) -> None:
    """Ask the workspace assistant a question."""
    asyncio.run(_ask(workspace_id, message, token, use_stream))


async def _ask(workspace_id: str, message: str, token: str, use_stream: bool) -> None:
    from grounded_chat.chat.exceptions import ChatError
    from grounded_chat.chat.orchestrator import ChatOrchestrator
    from grounded_chat.chat.rate_limiter import get_rate_limiter
    from grounded_chat.db.store import KnowledgeStore
    from grounded_chat.rag.exceptions import LLMError
    from grounded_chat.vectorstore import KnowledgeRetriever

    store = KnowledgeStore()
    orchestrator = ChatOrchestrator(
        store=store,
        retriever=KnowledgeRetriever(store),
        rate_limiter=get_rate_limiter(),
    )

    try:
        if use_stream:
            stream = await orchestrator.send_stream(workspace_id, token, message)
            done = {}
            async for event in stream:
                if event.type == "token":
                    click.echo(event.data["content"], nl=False)
                elif event.type == "done":
                    done = event.data
                else:
                    click.echo(f"\n[error] {event.data.get('message')}", err=True)
            click.echo()
            chips = done.get("suggestion_chips", [])
            confidence = done.get("confidence", 0.0)
            gap = done.get("gap_detected", False)
            await orchestrator.deferred.drain(timeout=30.0)
        else:
            reply = await orchestrator.send(workspace_id, token, message)
            click.echo(reply.answer)
            chips = reply.suggestion_chips
            confidence = reply.confidence
            gap = reply.gap_detected
    except (ChatError, LLMError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"\nConfidence: {confidence:.2f}{' (gap recorded)' if gap else ''}")
    if chips:
        click.echo(f"Suggestions: {' | '.join(chips)}")


@cli.command()
@click.option("--host", "-h", default="0.0.0.0", help="Host to bind")
@click.option("--port", "-p", type=int, default=8000, help="Port to run on")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the HTTP API server."""
    import uvicorn

    click.echo(f"Starting {settings.APP_NAME} on {host}:{port}...")
    uvicorn.run("grounded_chat.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
