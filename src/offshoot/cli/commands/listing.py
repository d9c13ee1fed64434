"""offshoot list -- list forks, sessions and jobs."""

from __future__ import annotations

from typing import Optional

import click

from offshoot.cli.formatting import format_forks, format_jobs, format_sessions


@click.group(name="list")
def list_group() -> None:
    """List forks, sessions or jobs."""


@list_group.command()
@click.option(
    "--status",
    "status_filter",
    default=None,
    type=click.Choice(["active", "running", "completed", "failed"], case_sensitive=False),
    help="Only forks in this state.",
)
@click.option("--unread", is_flag=True, help="Only forks not yet marked read.")
@click.option("--session", "session_id", default=None, help="Only forks of this parent session.")
@click.option("-n", "--limit", default=None, type=int, help="Maximum number of forks to show.")
@click.pass_context
def forks(
    ctx: click.Context,
    status_filter: Optional[str],
    unread: bool,
    session_id: Optional[str],
    limit: Optional[int],
) -> None:
    """Show forks, newest first."""
    from offshoot.cli import _orchestrator_session
    from offshoot.models.fork import ForkFilter, ForkStatus

    with _orchestrator_session(ctx) as (orch, console):
        orch.sweep()
        flt = ForkFilter(
            status=ForkStatus(status_filter.lower()) if status_filter else None,
            unread_only=unread,
            parent_session_id=session_id,
            limit=limit,
        )
        format_forks(orch.list_forks(flt), console)


@list_group.command()
@click.option("--fork", "fork_id", default=None, help="Only sessions of this fork.")
@click.pass_context
def sessions(ctx: click.Context, fork_id: Optional[str]) -> None:
    """Show known sessions."""
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        format_sessions(orch.list_sessions(fork_id), console)


@list_group.command()
@click.option("--fork", "fork_id", default=None, help="Only jobs of this fork.")
@click.pass_context
def jobs(ctx: click.Context, fork_id: Optional[str]) -> None:
    """Show jobs and their outputs."""
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        orch.sweep()
        format_jobs(orch.list_jobs(fork_id), console)
