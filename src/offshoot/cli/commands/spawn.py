"""offshoot spawn -- start a background fork."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional

import click

from offshoot.cli.formatting import format_fork_detail, get_console
from offshoot.models.config import FORK_ENV_VAR

if TYPE_CHECKING:
    from offshoot.orchestrator import ForkOrchestrator


def launch_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the worker routing options shared by ``spawn`` and ``message``."""
    options = [
        click.option("--model", default=None, help="Model for the worker."),
        click.option("--cwd", "working_dir", default=None, help="Working directory for the worker."),
        click.option("--worktree", is_flag=True, help="Request an isolated worktree."),
        click.option("--append-system-prompt", default=None, help="Extra system prompt text."),
        click.option("--system-prompt", default=None, help="Replace the system prompt."),
        click.option("--max-turns", default=None, type=click.IntRange(min=1), help="Turn limit."),
        click.option("--tools", default=None, help="Tool list passed to the worker."),
        click.option("--allowed-tools", default=None, help="Allowed tool patterns."),
        click.option("--mcp-config", default=None, help="MCP config file or JSON."),
        click.option("--settings", default=None, help="Settings file or JSON."),
        click.option("--agents", default=None, help="Agents JSON."),
        click.option("--add-dir", "add_dirs", multiple=True, help="Extra directory (repeatable)."),
        click.option("--env", "env_pairs", multiple=True, metavar="KEY=VALUE", help="Worker env var (repeatable)."),
        click.option(
            "--from-fork",
            "origin_fork_id",
            default=None,
            envvar=FORK_ENV_VAR,
            hidden=True,
            help="Fork this request comes from.",
        ),
        click.option("--foreground", is_flag=True, help="Ingest in this process and wait for the fork."),
        click.option("--timeout", default=None, type=float, help="Seconds to wait with --foreground."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def collect_options(params: dict[str, Any]) -> dict[str, Any]:
    """Pop launch options out of *params* into a LaunchOptions mapping."""
    env: dict[str, str] = {}
    for pair in params.pop("env_pairs", ()):
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value

    values: dict[str, Any] = {"env": env, "add_dirs": list(params.pop("add_dirs", ()))}
    for name in (
        "model",
        "working_dir",
        "append_system_prompt",
        "system_prompt",
        "max_turns",
        "tools",
        "allowed_tools",
        "mcp_config",
        "settings",
        "agents",
    ):
        value = params.pop(name, None)
        if value is not None:
            values[name] = value
    if params.pop("worktree", False):
        values["worktree"] = True
    return values


def finish_start(
    ctx: click.Context,
    orch: ForkOrchestrator,
    fork_id: str,
    *,
    foreground: bool,
    timeout: Optional[float],
) -> None:
    """Report a started fork; wait for it with --foreground, else hand it to a follower."""
    from offshoot.cli import _start_follower

    console = get_console()
    fork = orch.get_fork(fork_id)
    if not foreground:
        _start_follower(ctx, fork_id)
        console.print(f"{fork.fork_id} [dim]({fork.name})[/dim]", highlight=False)
        return

    orch.join(fork_id, timeout)
    fork = orch.wait(fork_id, timeout)
    format_fork_detail(fork, console)
    if not fork.status.is_terminal:
        console.print("[dim]Still running.[/dim]")


@click.command()
@click.argument("message", nargs=-1, required=True)
@click.option(
    "--session",
    "session_id",
    default=None,
    envvar="OFFSHOOT_SESSION_ID",
    help="Parent session id (auto-detected if omitted).",
)
@click.option("--no-fork-session", is_flag=True, help="Start a fresh conversation instead of forking.")
@click.option("--resume", "resume_session_id", default=None, help="Session to resume instead of the parent.")
@launch_options
@click.pass_context
def spawn(ctx: click.Context, message: tuple[str, ...], session_id: Optional[str], **params: Any) -> None:
    """Start a background fork working on MESSAGE and print its id."""
    from offshoot.cli import _orchestrator_session, _resolve_session

    foreground = params.pop("foreground")
    timeout = params.pop("timeout")
    origin_fork_id = params.pop("origin_fork_id")
    values = collect_options(params)
    if params.pop("no_fork_session"):
        values["fork_session"] = False
    resume = params.pop("resume_session_id")
    if resume:
        values["resume_session_id"] = resume

    text = " ".join(message)
    with _orchestrator_session(ctx) as (orch, _console):
        parent = _resolve_session(session_id)
        fork_id = orch.spawn(
            parent,
            text,
            values,
            origin_fork_id=origin_fork_id,
            ingest=foreground,
        )
        finish_start(ctx, orch, fork_id, foreground=foreground, timeout=timeout)
