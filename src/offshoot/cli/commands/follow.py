"""offshoot follow -- ingest a detached worker's output."""

from __future__ import annotations

import click

from offshoot.cli.formatting import format_fork_detail


@click.command()
@click.argument("fork_id")
@click.pass_context
def follow(ctx: click.Context, fork_id: str) -> None:
    """Record FORK_ID's events until its worker exits.

    Started in the background by ``offshoot spawn``. When the worker exits
    without calling ``done`` the fork is marked failed.
    """
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        count = orch.follow(fork_id)
        fork = orch.status(fork_id)
        console.print(f"[dim]{count} event(s) recorded.[/dim]")
        format_fork_detail(fork, console)
