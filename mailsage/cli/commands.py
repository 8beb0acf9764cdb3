"""CLI command implementations — streaming commands delegate to RequestOrchestrator."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import click
from rich import box
from rich.console import Console
from rich.table import Table

from mailsage.errors import EmptyQueryError, InvalidComposeModeError, MailsageError
from mailsage.orchestration.events import (
    ChunkEvent,
    EventType,
    ReferencesEvent,
    StreamEvent,
    StreamSink,
)
from mailsage.orchestration.orchestrator import RequestState
from mailsage.storage.models import EmailRow, RawEmail

if TYPE_CHECKING:
    from mailsage.cli.context import AppContext

logger = logging.getLogger(__name__)
console = Console(width=200)


# ── Console sink ─────────────────────────────────────────────────────────────


class ConsoleSink:
    """Renders stream events to the terminal, or as JSON lines with ``--json``."""

    def __init__(self, out: Console, json_output: bool = False) -> None:
        self._out = out
        self._json = json_output
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._json:
            click.echo(json.dumps(event.to_dict()))
            return
        if isinstance(event, ReferencesEvent):
            self._out.print(_references_table(event))
        elif isinstance(event, ChunkEvent):
            self._out.print(event.text, end="", markup=False, highlight=False, soft_wrap=True)
        elif event.type == EventType.NO_RESULTS:
            self._out.print(f"[yellow]{event.message}.[/yellow]")  # type: ignore[union-attr]
        elif event.type == EventType.ERROR:
            self._out.print(f"\n[red]{event.message}[/red]")  # type: ignore[union-attr]
        elif event.type == EventType.DONE:
            self._out.print()


def _references_table(event: ReferencesEvent) -> Table:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=48)
    table.add_column("Participants", max_width=48)
    table.add_column("Msgs", width=5)
    table.add_column("Thread", style="dim", max_width=20)
    for i, ref in enumerate(event.references, start=1):
        table.add_row(
            str(i),
            ref.subject,
            ", ".join(ref.participants),
            str(ref.message_count),
            ref.thread_id,
        )
    return table


def _stream(
    app: AppContext,
    json_output: bool,
    run: Callable[[StreamSink], Awaitable[RequestState]],
) -> None:
    """Run one streaming request against a ConsoleSink; exit non-zero if it failed."""
    state = asyncio.run(run(ConsoleSink(console, json_output=json_output)))
    if state == RequestState.FAILED:
        raise click.exceptions.Exit(1)


# ── Streaming commands ───────────────────────────────────────────────────────


@click.command()
@click.argument("query")
@click.option("--json", "json_output", is_flag=True, help="Emit events as JSON lines.")
@click.pass_obj
def search(app: AppContext, query: str, json_output: bool) -> None:
    """Answer a question from your indexed mail, citing the matching threads."""
    try:
        _stream(app, json_output, lambda sink: app.orchestrator.search(query, sink))
    except EmptyQueryError as exc:
        raise click.UsageError(str(exc)) from exc


@click.command()
@click.argument("thread_id")
@click.option("--json", "json_output", is_flag=True, help="Emit events as JSON lines.")
@click.pass_obj
def summarize(app: AppContext, thread_id: str, json_output: bool) -> None:
    """Summarise a thread (cached after the first run)."""
    _stream(app, json_output, lambda sink: app.orchestrator.summarize(thread_id, sink))


@click.command()
@click.argument("body")
@click.option(
    "--mode",
    required=True,
    type=click.Choice(["write", "improve"], case_sensitive=False),
    help="write: BODY is a brief. improve: BODY is a draft to revise.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit events as JSON lines.")
@click.pass_obj
def compose(app: AppContext, body: str, mode: str, json_output: bool) -> None:
    """Write or improve an email body.  Pass '-' as BODY to read from stdin."""
    text = sys.stdin.read() if body == "-" else body
    try:
        _stream(app, json_output, lambda sink: app.orchestrator.compose(text, mode, sink))
    except InvalidComposeModeError as exc:
        raise click.UsageError(str(exc)) from exc


# ── Storage commands ─────────────────────────────────────────────────────────


@click.command()
@click.option("--limit", default=20, show_default=True, help="Emails per page.")
@click.option("--offset", default=0, show_default=True, help="Emails to skip.")
@click.option("--label", default=None, help="Only emails carrying this label (e.g. INBOX, UNREAD).")
@click.pass_obj
def recent(app: AppContext, limit: int, offset: int, label: str | None) -> None:
    """List stored emails, newest first."""
    try:
        rows = asyncio.run(app.store.get_recent_emails(limit, offset, label))
    except MailsageError as exc:
        raise click.ClickException(exc.user_message()) from exc

    if not rows:
        if label is not None:
            console.print(f"[yellow]No emails labelled {label!r}.[/yellow]", highlight=False)
        else:
            console.print(
                "[yellow]No emails stored yet. "
                "Run `mailsage load emails.json` to get started.[/yellow]"
            )
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Date", width=12)
    table.add_column("From", max_width=30)
    table.add_column("Subject", max_width=50)
    table.add_column("Thread", style="dim", max_width=20)
    for i, row in enumerate(rows, start=offset + 1):
        table.add_row(str(i), (row.date or "")[:10], row.sender, row.subject, row.thread_id)
    console.print(table)


@click.command()
@click.pass_obj
def labels(app: AppContext) -> None:
    """List labels in use with their email counts, including the unread count."""
    try:
        counts = asyncio.run(app.store.get_label_counts())
    except MailsageError as exc:
        raise click.ClickException(exc.user_message()) from exc

    if not counts:
        console.print("[yellow]No labelled emails stored.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Label", max_width=40)
    table.add_column("Emails", justify="right", width=8)
    for entry in counts:
        table.add_row(entry.label, str(entry.count))
    console.print(table)

    unread = next((c.count for c in counts if c.label == "UNREAD"), 0)
    console.print(f"[bold]{unread}[/bold] unread")


@click.command()
@click.argument("thread_id")
@click.pass_obj
def thread(app: AppContext, thread_id: str) -> None:
    """Show every message in a thread, oldest first."""
    try:
        rows = asyncio.run(app.store.get_thread_messages(thread_id))
    except MailsageError as exc:
        raise click.ClickException(exc.user_message()) from exc

    if not rows:
        console.print(f"[yellow]No messages found for thread {thread_id!r}.[/yellow]")
        return

    console.print(f"\n[bold]{rows[0].subject}[/bold]  [dim]({len(rows)} message(s))[/dim]\n")
    for row in rows:
        console.print(f"[cyan]{row.sender}[/cyan]  [dim]{row.date or 'unknown date'}[/dim]")
        console.print(row.body or row.snippet, markup=False, highlight=False)
        console.print()


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def load(app: AppContext, path: str) -> None:
    """Store and index emails from a JSON file (a list of email objects)."""
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    emails = _read_emails(path)
    if not emails:
        console.print("[yellow]No emails in file.[/yellow]")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Storing & embedding...", total=len(emails))
        added = asyncio.run(_store_all(app, emails, lambda: progress.advance(task)))

    console.print(
        f"[green]Done.[/green] {len(emails)} email(s) processed, {added} new."
    )


@click.command()
@click.pass_obj
def reindex(app: AppContext) -> None:
    """Re-populate the vector store from emails already in the database.

    No API calls — use this after deleting the chroma directory to rebuild the index.
    """
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    rows: list[EmailRow] = app.store.db.get_all_emails()
    if not rows:
        console.print("[yellow]No emails in database to reindex.[/yellow]")
        return

    console.print(f"Reindexing [bold]{len(rows)}[/bold] emails from database into vector store...")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Embedding...", total=len(rows))
        for row in rows:
            app.store.vector_store.upsert(row)
            progress.advance(task)

    console.print(f"[green]Done.[/green] {len(rows)} emails indexed.")


_RAW_EMAIL_FIELDS = {f.name for f in dataclasses.fields(RawEmail)}
_REQUIRED_FIELDS = {"id", "thread_id", "sender", "subject"}


def _read_emails(path: str) -> list[RawEmail]:
    """Parse a JSON list of email objects into RawEmails; unknown keys are ignored."""
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Could not read {path}: {exc}") from exc
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a JSON list of emails")

    emails: list[RawEmail] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise click.ClickException(f"Item {i} in {path} is not an object")
        missing = _REQUIRED_FIELDS - item.keys()
        if missing:
            raise click.ClickException(f"Item {i} in {path} is missing {sorted(missing)}")
        fields = {k: v for k, v in item.items() if k in _RAW_EMAIL_FIELDS}
        fields.setdefault("snippet", (fields.get("body") or "")[:200])
        emails.append(RawEmail(**fields))
    return emails


async def _store_all(app: AppContext, emails: list[RawEmail], advance: Callable[[], None]) -> int:
    """Store emails one by one; returns how many were new."""
    added = 0
    for email in emails:
        try:
            if await app.store.add_email(email):
                added += 1
        except MailsageError as exc:
            raise click.ClickException(f"Failed on email {email.id}: {exc}") from exc
        advance()
    return added
