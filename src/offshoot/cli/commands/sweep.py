"""offshoot sweep -- fail forks whose workers are gone."""

from __future__ import annotations

import click


@click.command()
@click.pass_context
def sweep(ctx: click.Context) -> None:
    """Mark failed every unfinished fork whose worker has exited."""
    from offshoot.cli import _orchestrator_session

    with _orchestrator_session(ctx) as (orch, console):
        failed = orch.sweep()
        if not failed:
            console.print("[dim]Nothing to sweep.[/dim]")
            return
        for fork_id in failed:
            console.print(f"[red]failed[/red] {fork_id}")
