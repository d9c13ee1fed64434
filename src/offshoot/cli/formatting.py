"""Rich formatting helpers for the Offshoot CLI.

Provides functions that format SDK data structures for terminal display.
Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from offshoot.models.fork import ForkStatus, JobStatus
from offshoot.operations.hook import render_text

if TYPE_CHECKING:
    from offshoot.models.event import EventInfo
    from offshoot.models.fork import ForkInfo, JobInfo, SessionInfo
    from offshoot.models.notification import Ack, Notification

_STATUS_STYLES = {
    ForkStatus.ACTIVE: "cyan",
    ForkStatus.RUNNING: "blue",
    ForkStatus.COMPLETED: "green",
    ForkStatus.FAILED: "red",
    JobStatus.PENDING: "cyan",
    JobStatus.RUNNING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _styled(status: ForkStatus | JobStatus) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _short(value: str | None, width: int = 8) -> str:
    return value[:width] if value else "-"


def format_forks(forks: Sequence[ForkInfo], console: Console) -> None:
    """Display forks as a compact table, newest first."""
    if not forks:
        console.print("[dim]No forks.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Fork", style="yellow", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status", no_wrap=True)
    table.add_column("Read", justify="center")
    table.add_column("Parent", style="dim")
    table.add_column("Created", style="dim")
    table.add_column("Note")

    for fork in forks:
        table.add_row(
            fork.fork_id,
            escape(fork.name or ""),
            _styled(fork.status),
            "yes" if fork.read else "",
            _short(fork.parent_session_id),
            fork.created_at.strftime("%Y-%m-%d %H:%M"),
            escape(fork.failure_reason or ""),
        )

    console.print(table)


def format_fork_detail(fork: ForkInfo, console: Console) -> None:
    """Display one fork record."""
    console.print(f"[yellow]fork {fork.fork_id}[/yellow]  {escape(fork.name or '')}")
    console.print(f"  Status:  {_styled(fork.status)}")
    if fork.parent_session_id:
        console.print(f"  Parent:  {fork.parent_session_id}")
    if fork.fork_session_id:
        console.print(f"  Session: {fork.fork_session_id}")
    if fork.worker_pid is not None:
        console.print(f"  Pid:     {fork.worker_pid}")
    if fork.failure_reason:
        console.print(f"  Reason:  [red]{escape(fork.failure_reason)}[/red]")


def format_sessions(sessions: Sequence[SessionInfo], console: Console) -> None:
    """Display session records."""
    if not sessions:
        console.print("[dim]No sessions.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Session", no_wrap=True)
    table.add_column("Fork", style="yellow", no_wrap=True)
    table.add_column("Created", style="dim")
    for session in sessions:
        table.add_row(
            session.session_id,
            session.fork_id or "-",
            session.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def format_jobs(jobs: Sequence[JobInfo], console: Console) -> None:
    """Display job records with a one-line description."""
    if not jobs:
        console.print("[dim]No jobs.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Job", style="yellow", no_wrap=True)
    table.add_column("Fork", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Description")
    table.add_column("Output")
    for job in jobs:
        description = job.description.splitlines()[0] if job.description else ""
        table.add_row(
            job.job_id,
            job.fork_id,
            _styled(job.status),
            escape(description[:60]),
            escape((job.output or "")[:60]),
        )
    console.print(table)


def format_events(events: Sequence[EventInfo], console: Console, *, verbose: bool = False) -> None:
    """Display a fork's events in emission order."""
    if not events:
        console.print("[dim]No messages.[/dim]")
        return

    for event in events:
        header = f"[dim]{event.event_id[:13]}[/dim] [cyan]{event.role.value}[/cyan] {event.event_type}"
        if event.parent_tool_use_id:
            header += f" [dim](in {event.parent_tool_use_id})[/dim]"
        console.print(header)
        if event.text:
            text = event.text if verbose else event.text.strip()[:400]
            console.print(f"  {escape(text)}", highlight=False)
        if event.cost_usd is not None:
            console.print(f"  [green]${event.cost_usd:.4f}[/green]", highlight=False)


def format_notifications(notices: Sequence[Notification], console: Console) -> None:
    """Display drained notifications."""
    if not notices:
        console.print("[dim]No notifications.[/dim]")
        return
    console.print(f"[bold]{len(notices)} fork(s) finished:[/bold]")
    console.print(escape(render_text(notices)), highlight=False)


def format_ack(ack: Ack, console: Console, *, action: str) -> None:
    """Report the outcome of an idempotent call."""
    if ack.changed:
        target = ack.fork_id or f"{ack.count} fork(s)"
        console.print(f"[green]{action}[/green] {target}")
    else:
        status = f" (already {ack.status.value})" if ack.status is not None else ""
        console.print(f"[dim]No change{status}.[/dim]")


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
