"""Offshoot CLI -- terminal interface for background forks.

This module is NEVER imported from offshoot/__init__.py.
It is only loaded via the ``offshoot`` entry point defined in pyproject.toml
(or ``python -m offshoot``).
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

import click

from offshoot._version import __version__
from offshoot.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from offshoot.models.config import OffshootConfig
    from offshoot.orchestrator import ForkOrchestrator

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--db",
    default=None,
    envvar="OFFSHOOT_DB",
    help="Path to the offshoot database (default: <project>/.offshoot/offshoot.db).",
)
@click.option(
    "--project",
    default=None,
    envvar="OFFSHOOT_PROJECT_DIR",
    type=click.Path(file_okay=False),
    help="Project root (auto-discovered if omitted).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.version_option(__version__, prog_name="offshoot")
@click.pass_context
def cli(ctx: click.Context, db: str | None, project: str | None, verbose: bool) -> None:
    """Offshoot: run background forks of an agent session."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["project"] = project
    if verbose:
        from rich.console import Console
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


def _get_config(ctx: click.Context) -> OffshootConfig:
    """Build the project configuration from Click context."""
    from offshoot.models.config import OffshootConfig

    obj = ctx.obj
    if obj.get("config") is not None:
        return obj["config"]
    overrides = {}
    if obj.get("db_path"):
        overrides["db_path"] = os.path.abspath(obj["db_path"])
    config = OffshootConfig.for_project(obj.get("project"), **overrides)
    obj["config"] = config
    return config


def _get_orchestrator(ctx: click.Context) -> ForkOrchestrator:
    """Open an orchestrator on the project database.

    A launcher placed in ``ctx.obj["launcher"]`` is used instead of the
    ``claude`` CLI launcher.
    """
    from offshoot.orchestrator import ForkOrchestrator
    from offshoot.store import Store
    from offshoot.worker.claude import ClaudeCliLauncher

    config = _get_config(ctx)
    launcher = ctx.obj.get("launcher")
    if launcher is None:
        launcher = ClaudeCliLauncher(
            config.resolved_state_dir(),
            command=config.worker_command,
            env={"OFFSHOOT_DB": config.db_path},
            poll_interval=config.poll_interval,
        )
    store = Store.from_config(config)
    return ForkOrchestrator(store, launcher, config=config, owns_store=True)


@contextmanager
def _orchestrator_session(ctx: click.Context) -> Iterator[tuple[ForkOrchestrator, Console]]:
    """Context manager that opens an orchestrator, yields (orchestrator, console), and cleans up.

    Exceptions raised inside the block are printed as CLI errors and turned
    into exit status 1.
    """
    console = get_console()
    try:
        orch = _get_orchestrator(ctx)
        try:
            yield orch, console
        finally:
            orch.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


def _resolve_session(session_id: Optional[str]) -> Optional[str]:
    """Explicit session id, else the detected one (may be None)."""
    from offshoot.operations.detect import detect_session_id

    return session_id or detect_session_id()


def _start_follower(ctx: click.Context, fork_id: str) -> None:
    """Run ``offshoot follow <fork_id>`` detached from this process."""
    config = _get_config(ctx)
    args = [sys.executable, "-m", "offshoot", "--db", config.db_path, "follow", fork_id]
    if ctx.obj.get("project"):
        args[3:3] = ["--project", ctx.obj["project"]]
    subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    logger.debug("Started follower for fork %s", fork_id)


# Register subcommands after cli group is defined
from offshoot.cli.commands.spawn import spawn  # noqa: E402
from offshoot.cli.commands.message import message  # noqa: E402
from offshoot.cli.commands.done import done, fail  # noqa: E402
from offshoot.cli.commands.listing import list_group  # noqa: E402
from offshoot.cli.commands.messages import messages  # noqa: E402
from offshoot.cli.commands.read import read  # noqa: E402
from offshoot.cli.commands.notify import notify  # noqa: E402
from offshoot.cli.commands.sweep import sweep  # noqa: E402
from offshoot.cli.commands.follow import follow  # noqa: E402

cli.add_command(spawn)
cli.add_command(message)
cli.add_command(done)
cli.add_command(fail)
cli.add_command(list_group)
cli.add_command(messages)
cli.add_command(read)
cli.add_command(notify)
cli.add_command(sweep)
cli.add_command(follow)
