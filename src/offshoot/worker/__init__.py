"""Worker launchers and handles.

Provides the ``claude`` CLI launcher and the stream-file handle used to
follow detached workers.
"""

from offshoot.worker.claude import ClaudeCliLauncher, build_args
from offshoot.worker.handle import EXIT_UNKNOWN, StreamFileHandle, pid_alive

__all__ = [
    "ClaudeCliLauncher",
    "StreamFileHandle",
    "build_args",
    "pid_alive",
    "EXIT_UNKNOWN",
]
