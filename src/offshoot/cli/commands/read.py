"""offshoot read -- mark forks as read."""

from __future__ import annotations

from typing import Optional

import click

from offshoot.cli.formatting import format_ack


@click.command()
@click.argument("fork_id", required=False)
@click.option("--all", "all_forks", is_flag=True, help="Mark every fork read, running ones included.")
@click.option("--session", "session_id", default=None, help="With --all, only forks of this parent session.")
@click.pass_context
def read(ctx: click.Context, fork_id: Optional[str], all_forks: bool, session_id: Optional[str]) -> None:
    """Mark FORK_ID (or, with --all, every unread fork) as read."""
    from offshoot.cli import _orchestrator_session

    if (fork_id is None) == (not all_forks):
        raise click.UsageError("Pass a FORK_ID or --all.")

    with _orchestrator_session(ctx) as (orch, console):
        if all_forks:
            ack = orch.mark_all_read(session_id)
        else:
            ack = orch.mark_read(fork_id)
        format_ack(ack, console, action="Marked read")
