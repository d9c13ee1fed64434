"""offshoot message -- continue a fork's conversation."""

from __future__ import annotations

from typing import Any, Optional

import click

from offshoot.cli.commands.spawn import collect_options, finish_start, launch_options
from offshoot.exceptions import OffshootError


@click.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--fork", "fork_id", default=None, help="Fork to continue.")
@click.option("--last", is_flag=True, help="Continue the most recent fork of this session.")
@click.option(
    "--session",
    "session_id",
    default=None,
    envvar="OFFSHOOT_SESSION_ID",
    help="Session whose latest fork --last picks (auto-detected if omitted).",
)
@launch_options
@click.pass_context
def message(
    ctx: click.Context,
    message: tuple[str, ...],
    fork_id: Optional[str],
    last: bool,
    session_id: Optional[str],
    **params: Any,
) -> None:
    """Send MESSAGE to an existing fork; the reply runs as a new fork."""
    from offshoot.cli import _orchestrator_session, _resolve_session

    if (fork_id is None) == (not last):
        raise click.UsageError("Pass exactly one of --fork or --last.")

    foreground = params.pop("foreground")
    timeout = params.pop("timeout")
    origin_fork_id = params.pop("origin_fork_id")
    values = collect_options(params)

    with _orchestrator_session(ctx) as (orch, _console):
        if last:
            latest = orch.latest_fork(_resolve_session(session_id))
            if latest is None:
                raise OffshootError("No forks to continue.")
            fork_id = latest.fork_id
        new_id = orch.message_fork(
            fork_id,
            " ".join(message),
            values,
            origin_fork_id=origin_fork_id,
            ingest=foreground,
        )
        finish_start(ctx, orch, new_id, foreground=foreground, timeout=timeout)
