"""Launcher for the ``claude`` CLI.

Runs ``claude -p <message>`` in stream-json mode as a detached process
(its own session, stdin closed) with stdout redirected to
``<state_dir>/streams/<fork_id>.ndjson`` and stderr to
``<state_dir>/streams/<fork_id>.log``.

The worker's environment carries ``OFFSHOOT_FORK_ID`` so that offshoot
commands run from inside the worker know they are inside a fork.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from offshoot.models.config import FORK_ENV_VAR, LaunchOptions
from offshoot.protocols import LaunchRequest
from offshoot.worker.handle import StreamFileHandle

logger = logging.getLogger(__name__)

STREAMS_DIR = "streams"


def build_args(command: str, request: LaunchRequest) -> list[str]:
    """Command line for one worker run."""
    opts: LaunchOptions = request.options
    args = [
        command,
        "--dangerously-skip-permissions",
        "--output-format",
        "stream-json",
        "--verbose",
        "--session-id",
        request.session_id,
    ]

    resume = opts.resume_session_id
    if resume is None and opts.fork_session:
        resume = request.parent_session_id
    if resume:
        args += ["-r", resume]
        if opts.fork_session:
            args.append("--fork-session")

    if opts.model:
        args += ["--model", opts.model]

    if opts.system_prompt:
        args += ["--system-prompt", f"{opts.system_prompt}\n\n{request.callback_instruction}"]
    elif opts.append_system_prompt:
        args += [
            "--append-system-prompt",
            f"{opts.append_system_prompt}\n\n{request.callback_instruction}",
        ]
    else:
        args += ["--append-system-prompt", request.callback_instruction]

    add_dirs = list(opts.add_dirs)
    if opts.working_dir and opts.working_dir not in add_dirs:
        add_dirs.insert(0, opts.working_dir)
    for directory in add_dirs:
        args += ["--add-dir", directory]

    if opts.agents:
        args += ["--agents", opts.agents]
    if opts.mcp_config:
        args += ["--mcp-config", opts.mcp_config]
    if opts.settings:
        args += ["--settings", opts.settings]
    if opts.max_turns is not None:
        args += ["--max-turns", str(opts.max_turns)]
    if opts.tools:
        args += ["--tools", opts.tools]
    if opts.allowed_tools:
        args += ["--allowedTools", opts.allowed_tools]
    if opts.include_partial_messages:
        args.append("--include-partial-messages")

    args += ["-p", request.message]
    return args


class ClaudeCliLauncher:
    """WorkerLauncher that runs the ``claude`` CLI as a detached process.

    Args:
        state_dir: Directory holding the ``streams/`` folder.
        command: Executable to run.
        env: Extra environment for every worker (e.g. ``OFFSHOOT_DB`` so the
            worker's ``done`` call reaches the same database).
        poll_interval: Seconds between stream-file polls.
    """

    def __init__(
        self,
        state_dir: str | os.PathLike,
        *,
        command: str = "claude",
        env: Optional[Mapping[str, str]] = None,
        poll_interval: float = 0.2,
    ) -> None:
        self._streams = Path(state_dir) / STREAMS_DIR
        self._command = command
        self._env = dict(env or {})
        self._poll_interval = poll_interval

    def stream_path(self, fork_id: str) -> Path:
        return self._streams / f"{fork_id}.ndjson"

    def log_path(self, fork_id: str) -> Path:
        return self._streams / f"{fork_id}.log"

    def launch(self, request: LaunchRequest) -> StreamFileHandle:
        opts = request.options
        if opts.worktree:
            logger.warning(
                "Fork %s requested worktree isolation; running in place instead",
                request.fork_id,
            )

        self._streams.mkdir(parents=True, exist_ok=True)
        stream_path = self.stream_path(request.fork_id)
        args = build_args(self._command, request)

        env = os.environ.copy()
        env.update(self._env)
        env.update(opts.env)
        env[FORK_ENV_VAR] = request.fork_id

        cwd = opts.working_dir or None
        with open(stream_path, "wb") as out, open(self.log_path(request.fork_id), "wb") as err:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=err,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        logger.info("Launched fork %s as pid %d", request.fork_id, process.pid)
        return StreamFileHandle(
            request.fork_id,
            stream_path,
            process=process,
            poll_interval=self._poll_interval,
        )

    def attach(
        self, fork_id: str, *, pid: Optional[int], stream_path: Optional[str]
    ) -> Optional[StreamFileHandle]:
        path = Path(stream_path) if stream_path else self.stream_path(fork_id)
        if pid is None and not path.exists():
            return None
        return StreamFileHandle(fork_id, path, pid=pid, poll_interval=self._poll_interval)
