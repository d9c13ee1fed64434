"""offshoot notify -- deliver finished-fork notices to a session."""

from __future__ import annotations

from typing import Optional

import click

from offshoot.cli.formatting import format_notifications


@click.command()
@click.option(
    "--session",
    "session_id",
    default=None,
    envvar="OFFSHOOT_SESSION_ID",
    help="Recipient session (auto-detected if omitted).",
)
@click.option("--hook", is_flag=True, help="Print stop-hook JSON (nothing when there is no news).")
@click.pass_context
def notify(ctx: click.Context, session_id: Optional[str], hook: bool) -> None:
    """Drain the notices queued for a session.

    Each notice is delivered once: a second call prints nothing new.
    """
    from offshoot.cli import _orchestrator_session, _resolve_session
    from offshoot.operations.hook import render_hook

    with _orchestrator_session(ctx) as (orch, console):
        orch.sweep()
        notices = orch.drain_notifications(_resolve_session(session_id))
        if hook:
            payload = render_hook(notices)
            if payload is not None:
                click.echo(payload)
            return
        format_notifications(notices, console)
