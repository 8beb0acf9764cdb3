"""CLI entry point for mailsage."""

import logging

import click
from dotenv import load_dotenv

from mailsage.cli.context import AppContext
from mailsage.config import Settings

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Ask questions about your mail, summarise threads, and draft emails."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if ctx.obj is None:
        ctx.obj = AppContext.from_settings(Settings.from_env())
        ctx.call_on_close(ctx.obj.close)


# Import and register commands after cli is defined to avoid circular imports.
from mailsage.cli.commands import (  # noqa: E402
    compose,
    labels,
    load,
    recent,
    reindex,
    search,
    summarize,
    thread,
)

cli.add_command(search)
cli.add_command(summarize)
cli.add_command(compose)
cli.add_command(recent)
cli.add_command(labels)
cli.add_command(thread)
cli.add_command(load)
cli.add_command(reindex)
