"""offshoot messages -- show what a fork emitted."""

from __future__ import annotations

from typing import Optional

import click

from offshoot.cli.formatting import format_events


@click.command()
@click.argument("fork_id")
@click.option("-n", "--limit", default=None, type=int, help="Show only the last N messages.")
@click.option("-v", "--verbose", is_flag=True, help="Print full message text.")
@click.option("--json", "as_json", is_flag=True, help="Print one JSON object per line.")
@click.pass_context
def messages(
    ctx: click.Context, fork_id: str, limit: Optional[int], verbose: bool, as_json: bool
) -> None:
    """Show FORK_ID's events in emission order."""
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        events = orch.get_messages(fork_id)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        if as_json:
            for event in events:
                click.echo(event.model_dump_json())
        else:
            format_events(events, console, verbose=verbose)
