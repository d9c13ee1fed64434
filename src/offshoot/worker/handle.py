"""Worker handle backed by a stream file.

Detached workers write their NDJSON output to a file instead of a pipe, so
the process that launched them may exit and another process can attach to
the same worker later. The handle tails that file until the worker has
exited and every line it wrote has been read.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Iterator, Optional

from offshoot.models.event import NewEvent
from offshoot.operations.stream import parse_lines

logger = logging.getLogger(__name__)

# Reported by poll() when the worker is gone but its exit code is not known
# (it was launched by another process).
EXIT_UNKNOWN = -1


def pid_alive(pid: int) -> bool:
    """True if a process with *pid* exists (POSIX signal-0 probe)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class StreamFileHandle:
    """A worker whose stdout is an NDJSON file on disk."""

    def __init__(
        self,
        fork_id: str,
        stream_path: str | os.PathLike,
        *,
        process: Optional[subprocess.Popen] = None,
        pid: Optional[int] = None,
        poll_interval: float = 0.2,
    ) -> None:
        self._fork_id = fork_id
        self._path = Path(stream_path)
        self._process = process
        self._pid = process.pid if process is not None else pid
        self._poll_interval = poll_interval
        self._session_id: Optional[str] = None

    @property
    def fork_id(self) -> str:
        return self._fork_id

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def stream_path(self) -> Optional[str]:
        return str(self._path)

    def poll(self) -> Optional[int]:
        if self._process is not None:
            return self._process.poll()
        if self._pid is None or not pid_alive(self._pid):
            return EXIT_UNKNOWN
        return None

    def terminate(self) -> None:
        if self.poll() is not None:
            return
        if self._process is not None:
            self._process.terminate()
        elif self._pid is not None:
            os.kill(self._pid, signal.SIGTERM)
        logger.debug("Sent terminate to fork %s (pid %s)", self._fork_id, self._pid)

    def events(self) -> Iterator[NewEvent]:
        for event in parse_lines(self._tail(), fork_id=self._fork_id):
            if self._session_id is None and event.session_id:
                self._session_id = event.session_id
            yield event

    def _tail(self) -> Iterator[str]:
        while not self._path.exists():
            if self.poll() is not None:
                logger.debug("Fork %s exited before writing %s", self._fork_id, self._path)
                return
            time.sleep(self._poll_interval)

        with self._path.open("r", encoding="utf-8", errors="replace") as fh:
            partial = ""
            while True:
                chunk = fh.readline()
                if chunk:
                    partial += chunk
                    if partial.endswith("\n"):
                        yield partial
                        partial = ""
                    continue
                if self.poll() is not None:
                    partial += fh.read()
                    yield from partial.splitlines()
                    return
                time.sleep(self._poll_interval)

    def __repr__(self) -> str:
        return f"StreamFileHandle(fork_id='{self._fork_id}', pid={self._pid})"
