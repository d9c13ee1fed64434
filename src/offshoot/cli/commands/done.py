"""offshoot done / fail -- finish a fork."""

from __future__ import annotations

import click

from offshoot.cli.formatting import format_ack


@click.command()
@click.argument("fork_id")
@click.argument("summary", nargs=-1, required=True)
@click.pass_context
def done(ctx: click.Context, fork_id: str, summary: tuple[str, ...]) -> None:
    """Mark FORK_ID completed with SUMMARY and notify its parent session.

    Safe to repeat: a finished fork is left as it is.
    """
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        ack = orch.complete(fork_id, " ".join(summary))
        format_ack(ack, console, action="Completed")


@click.command()
@click.argument("fork_id")
@click.argument("reason", nargs=-1, required=True)
@click.pass_context
def fail(ctx: click.Context, fork_id: str, reason: tuple[str, ...]) -> None:
    """Mark FORK_ID failed with REASON and notify its parent session."""
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        ack = orch.mark_failed(fork_id, " ".join(reason))
        format_ack(ack, console, action="Failed")
