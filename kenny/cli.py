"""CLI entry point for the Kenny assistant pipeline.

Commands:
    kenny ask       — process one utterance and print the response JSON
    kenny chat      — interactive session (supports /correct)
    kenny correct   — apply a correction to a session
    kenny patterns  — list (or forget) learned correction patterns
    kenny sessions  — list stored sessions
    kenny clear     — delete a session
    kenny stats     — decision / correction statistics from the audit log
"""

import asyncio
import json
import logging
import shlex
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import click

from kenny.config import (
    AUDIT_LOG_PATH,
    CACHE_MAX_ENTRIES,
    CACHE_TTL_SECONDS,
    COMPLETION_TIMEOUT_SECONDS,
    CONFIRM_THRESHOLD,
    DECISION_POLICY,
    EXECUTE_THRESHOLD,
    MAX_TURNS,
    MIN_SLOTS,
    OLLAMA_BASE_URL,
    OLLAMA_KEEP_ALIVE,
    OLLAMA_MODEL,
    PATTERN_DB_PATH,
    RECORDS_DB_PATH,
    RULE_CONFIDENCE_CUTOFF,
    SESSION_DB_PATH,
)

logger = logging.getLogger("kenny")

POLICY_CHOICE = click.Choice(["threshold", "semantic"])


def _parse_slots(pairs: tuple[str, ...] | list[str]) -> dict:
    """Turn ``key=value`` pairs into a slot dict. Values may be JSON."""
    slots = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}")
        try:
            slots[key] = json.loads(value)
        except json.JSONDecodeError:
            slots[key] = value
    return slots


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Kenny — intent understanding and decision pipeline for a personal assistant."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@asynccontextmanager
async def _open_pipeline(model: str | None, policy_name: str) -> AsyncIterator:
    """Construct every component once and yield the wired pipeline."""
    from kenny.audit.logger import DecisionLog
    from kenny.integrations.cache import ResponseCache
    from kenny.integrations.ollama import CompletionError, OllamaClient
    from kenny.memory.pattern_memory import PatternMemory
    from kenny.memory.pattern_store import PatternStore
    from kenny.orchestrator.context import ConversationContextManager
    from kenny.orchestrator.corrections import CorrectionHandler
    from kenny.orchestrator.decision import build_policy
    from kenny.orchestrator.dispatcher import ActionDispatcher
    from kenny.orchestrator.pipeline import AssistantPipeline
    from kenny.orchestrator.session_store import SessionStore
    from kenny.orchestrator.summarizer import TurnSummarizer
    from kenny.planner.intent_classifier import IntentClassifier
    from kenny.planner.slot_extractor import SlotExtractor
    from kenny.services.events import CalendarService
    from kenny.services.mail import EmailService
    from kenny.services.notes import NoteService
    from kenny.services.records import RecordStore
    from kenny.services.reminders import ReminderService

    async with OllamaClient(
        OLLAMA_BASE_URL,
        default_model=model or OLLAMA_MODEL,
        default_keep_alive=OLLAMA_KEEP_ALIVE,
        timeout=COMPLETION_TIMEOUT_SECONDS,
        cache=ResponseCache(CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS),
    ) as ollama:
        if not ollama.default_model:
            try:
                picked = await ollama.pick_instruct_model()
            except CompletionError as exc:
                logger.warning("Ollama unavailable, using rules only: %s", exc)
                picked = None
            if picked:
                ollama.set_default_model(picked)
                logger.info("Auto-selected model: %s", picked)

        with (
            PatternStore(PATTERN_DB_PATH) as pattern_store,
            SessionStore(SESSION_DB_PATH) as session_store,
            RecordStore(RECORDS_DB_PATH) as records,
        ):
            pattern_memory = PatternMemory(pattern_store)
            contexts = ConversationContextManager(
                store=session_store, max_turns=MAX_TURNS, summarizer=TurnSummarizer(ollama)
            )
            audit = DecisionLog(AUDIT_LOG_PATH)
            dispatcher = ActionDispatcher(
                calendar=CalendarService(records),
                reminders=ReminderService(records),
                notes=NoteService(records),
                email=EmailService(records),
            )
            yield AssistantPipeline(
                classifier=IntentClassifier(
                    ollama=ollama, pattern_memory=pattern_memory, rule_cutoff=RULE_CONFIDENCE_CUTOFF
                ),
                extractor=SlotExtractor(ollama=ollama, min_slots=MIN_SLOTS),
                policy=build_policy(
                    policy_name,
                    ollama=ollama,
                    confirm_threshold=CONFIRM_THRESHOLD,
                    execute_threshold=EXECUTE_THRESHOLD,
                ),
                contexts=contexts,
                dispatcher=dispatcher,
                corrections=CorrectionHandler(
                    contexts=contexts, pattern_memory=pattern_memory, dispatcher=dispatcher, audit=audit
                ),
                audit=audit,
            )


# ------------------------------------------------------------------
# kenny ask
# ------------------------------------------------------------------


@cli.command()
@click.argument("text")
@click.option("--session", "session_id", default=None, help="Session id (generated if omitted).")
@click.option("--user", "user_id", default=None, help="User id.")
@click.option("--policy", type=POLICY_CHOICE, default=DECISION_POLICY, show_default=True, help="Decision policy.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def ask(text: str, session_id: str | None, user_id: str | None, policy: str, model: str | None) -> None:
    """Process one utterance and print the response as JSON."""
    asyncio.run(_ask_async(text, session_id, user_id, policy, model))


async def _ask_async(
    text: str,
    session_id: str | None,
    user_id: str | None,
    policy: str,
    model: str | None,
) -> None:
    from kenny.schemas.orchestrator import AssistantRequest

    async with _open_pipeline(model, policy) as pipeline:
        response = await pipeline.handle(
            AssistantRequest(text=text, session_id=session_id, user_id=user_id)
        )
    click.echo(json.dumps(response.to_wire(), indent=2))


# ------------------------------------------------------------------
# kenny chat
# ------------------------------------------------------------------


@cli.command()
@click.option("--session", "session_id", default=None, help="Resume a session by id or prefix.")
@click.option("--user", "user_id", default=None, help="User id.")
@click.option("--policy", type=POLICY_CHOICE, default=DECISION_POLICY, show_default=True, help="Decision policy.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def chat(session_id: str | None, user_id: str | None, policy: str, model: str | None) -> None:
    """Interactive session. Type /correct INTENT [key=value ...] [--always] to fix the last answer."""
    asyncio.run(_chat_async(session_id, user_id, policy, model))


async def _chat_async(
    session_id: str | None,
    user_id: str | None,
    policy: str,
    model: str | None,
) -> None:
    import uuid

    from kenny.schemas.orchestrator import AssistantRequest, CorrectionRequest

    if session_id:
        from kenny.orchestrator.session_store import SessionStore

        with SessionStore(SESSION_DB_PATH) as store:
            resolved = store.resolve_id(session_id)
        if resolved is None:
            click.echo(f"No session matching '{session_id}'.", err=True)
            sys.exit(1)
        session_id = resolved
    else:
        session_id = str(uuid.uuid4())

    click.echo(f"Session {session_id[:8]}. Type 'quit' to exit.\n")

    async with _open_pipeline(model, policy) as pipeline:
        while True:
            try:
                text = click.prompt("You", prompt_suffix="> ")
            except (EOFError, click.Abort):
                click.echo()
                break
            if text.strip().lower() in ("quit", "exit", "/quit"):
                break

            if text.startswith("/correct"):
                args = shlex.split(text)[1:]
                always = "--always" in args
                args = [a for a in args if a != "--always"]
                if not args:
                    click.echo("Usage: /correct INTENT [key=value ...] [--always]")
                    continue
                try:
                    slots = _parse_slots(args[1:])
                except click.BadParameter as exc:
                    click.echo(str(exc))
                    continue
                response = await pipeline.correct(
                    CorrectionRequest(
                        session_id=session_id,
                        corrected_intent=args[0],
                        corrected_slots=slots,
                        always_apply=always,
                    )
                )
            else:
                response = await pipeline.handle(
                    AssistantRequest(text=text, session_id=session_id, user_id=user_id)
                )

            click.echo(f"Kenny [{response.decision.value} {response.intent} {response.confidence:.0%}]> {response.message}")
            if response.follow_up:
                click.echo(f"  {response.follow_up}")


# ------------------------------------------------------------------
# kenny correct
# ------------------------------------------------------------------


@cli.command()
@click.option("--session", "session_id", required=True, help="Session the correction belongs to.")
@click.option("--intent", "corrected_intent", required=True, help="The intent that was meant.")
@click.option("--slot", "slot_pairs", multiple=True, help="Corrected slot as key=value (repeatable).")
@click.option("--text", "original_text", default=None, help="Original utterance (defaults to the last one).")
@click.option("--always", "always_apply", is_flag=True, help="Remember this correction for future requests.")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
def correct(
    session_id: str,
    corrected_intent: str,
    slot_pairs: tuple[str, ...],
    original_text: str | None,
    always_apply: bool,
    model: str | None,
) -> None:
    """Apply a correction to a session and re-dispatch."""
    slots = _parse_slots(slot_pairs)
    asyncio.run(_correct_async(session_id, corrected_intent, slots, original_text, always_apply, model))


async def _correct_async(
    session_id: str,
    corrected_intent: str,
    slots: dict,
    original_text: str | None,
    always_apply: bool,
    model: str | None,
) -> None:
    from kenny.schemas.orchestrator import CorrectionRequest

    async with _open_pipeline(model, DECISION_POLICY) as pipeline:
        response = await pipeline.correct(
            CorrectionRequest(
                session_id=session_id,
                original_text=original_text,
                corrected_intent=corrected_intent,
                corrected_slots=slots,
                always_apply=always_apply,
            )
        )
    click.echo(json.dumps(response.to_wire(), indent=2))
    if not response.success:
        sys.exit(1)


# ------------------------------------------------------------------
# kenny patterns
# ------------------------------------------------------------------


@cli.command()
@click.option("--forget", default=None, help="Forget the pattern learned for this text.")
def patterns(forget: str | None) -> None:
    """List learned correction patterns, most frequent first."""
    from kenny.memory.pattern_memory import PatternMemory
    from kenny.memory.pattern_store import PatternStore

    with PatternStore(PATTERN_DB_PATH) as store:
        memory = PatternMemory(store)
        if forget:
            if memory.forget(forget):
                click.echo(f"Forgot pattern for '{forget}'.")
            else:
                click.echo(f"No pattern for '{forget}'.", err=True)
                sys.exit(1)
            return

        entries = memory.entries()
        if not entries:
            click.echo("No learned patterns.")
            return
        for entry in entries:
            slots = json.dumps(entry.slots) if entry.slots else ""
            click.echo(f"{entry.frequency:>4}x  {entry.key!r} -> {entry.intent} {slots}".rstrip())


# ------------------------------------------------------------------
# kenny sessions / clear
# ------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Max sessions to list.")
def sessions(limit: int) -> None:
    """List stored sessions, most recently active first."""
    from kenny.orchestrator.session_store import SessionStore

    with SessionStore(SESSION_DB_PATH) as store:
        rows = store.list_sessions(limit)
    if not rows:
        click.echo("No sessions.")
        return
    for row in rows:
        click.echo(f"{row['id'][:8]}  {row['user_id']:<12} {row['turn_count']:>3} turns  {row['updated_at'][:16]}")


@cli.command()
@click.argument("session_id")
def clear(session_id: str) -> None:
    """Delete a session (full id or prefix) and its turns."""
    from kenny.orchestrator.context import ConversationContextManager
    from kenny.orchestrator.session_store import SessionStore

    with SessionStore(SESSION_DB_PATH) as store:
        resolved = store.resolve_id(session_id)
        if resolved is None:
            click.echo(f"No session matching '{session_id}'.", err=True)
            sys.exit(1)
        ConversationContextManager(store=store).clear(resolved)
    click.echo(f"Cleared session {resolved[:8]}.")


# ------------------------------------------------------------------
# kenny stats
# ------------------------------------------------------------------


@cli.command()
@click.option("--hours", default=24, show_default=True, help="Lookback period in hours (0 = all).")
def stats(hours: int) -> None:
    """Show decision and correction statistics."""
    from kenny.audit.logger import DecisionLog, summarize

    since = datetime.now(UTC) - timedelta(hours=hours) if hours > 0 else None
    summary = summarize(DecisionLog(AUDIT_LOG_PATH).read_entries(since=since))

    window = f"last {hours}h" if hours > 0 else "all time"
    click.echo(f"Decisions ({window}): {summary['total']}")
    click.echo(f"Corrections: {summary['corrections']} ({summary['correction_rate']:.0%} of decisions)")
    for label, key in (("By decision", "by_decision"), ("By provenance", "by_provenance"), ("By intent", "by_intent")):
        counts = summary[key]
        if counts:
            click.echo(f"{label}:")
            for name, count in sorted(counts.items(), key=lambda kv: -kv[1]):
                click.echo(f"  {name:<16} {count}")
