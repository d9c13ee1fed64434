"""Tests for the claude CLI launcher and the stream-file handle.

Covers: command-line construction from LaunchOptions, detached launch with
file redirection, re-attachment, and tailing a finished stream file.
"""

from __future__ import annotations

import json
import shutil

import pytest

from offshoot.models.config import LaunchOptions
from offshoot.protocols import LaunchRequest, WorkerHandle, WorkerLauncher
from offshoot.worker import EXIT_UNKNOWN, ClaudeCliLauncher, StreamFileHandle, build_args


def _request(**options) -> LaunchRequest:
    return LaunchRequest(
        fork_id="f1",
        message="Write tests",
        session_id="new-session",
        callback_instruction="CALL BACK",
        options=LaunchOptions(**options),
        parent_session_id="parent-session",
    )


# ---------------------------------------------------------------------------
# build_args
# ---------------------------------------------------------------------------

class TestBuildArgs:
    """Tests for build_args."""

    def test_defaults_fork_the_parent(self):
        args = build_args("claude", _request())
        assert args[0] == "claude"
        assert args[-2:] == ["-p", "Write tests"]
        assert args[args.index("--session-id") + 1] == "new-session"
        assert args[args.index("-r") + 1] == "parent-session"
        assert "--fork-session" in args
        assert args[args.index("--append-system-prompt") + 1] == "CALL BACK"
        assert "stream-json" in args

    def test_fresh_conversation(self):
        args = build_args("claude", _request(fork_session=False))
        assert "-r" not in args
        assert "--fork-session" not in args

    def test_resume_without_fork(self):
        args = build_args("claude", _request(resume_session_id="old", fork_session=False))
        assert args[args.index("-r") + 1] == "old"
        assert "--fork-session" not in args

    def test_system_prompt_keeps_callback(self):
        args = build_args("claude", _request(system_prompt="Be brief."))
        value = args[args.index("--system-prompt") + 1]
        assert value.startswith("Be brief.")
        assert value.endswith("CALL BACK")
        assert "--append-system-prompt" not in args

    def test_routing_options(self):
        args = build_args(
            "claude",
            _request(
                model="opus",
                working_dir="/work",
                add_dirs=["/extra"],
                max_turns=5,
                allowed_tools="Bash(git:*)",
                include_partial_messages=True,
            ),
        )
        assert args[args.index("--model") + 1] == "opus"
        dirs = [args[i + 1] for i, a in enumerate(args) if a == "--add-dir"]
        assert dirs == ["/work", "/extra"]
        assert args[args.index("--max-turns") + 1] == "5"
        assert args[args.index("--allowedTools") + 1] == "Bash(git:*)"
        assert "--include-partial-messages" in args

    def test_unknown_option_rejected(self):
        with pytest.raises(ValueError):
            LaunchOptions(colour="blue")


# ---------------------------------------------------------------------------
# StreamFileHandle
# ---------------------------------------------------------------------------

class TestStreamFileHandle:
    """Tests for StreamFileHandle on a stream written by a worker that is gone."""

    def test_reads_whole_file_after_exit(self, tmp_path):
        path = tmp_path / "f1.ndjson"
        lines = [
            {"type": "system", "session_id": "sess-9"},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}},
        ]
        # Last line has no trailing newline: a worker killed mid-write.
        path.write_text(json.dumps(lines[0]) + "\n" + json.dumps(lines[1]))

        handle = StreamFileHandle("f1", path, pid=None, poll_interval=0.01)
        assert isinstance(handle, WorkerHandle)
        assert handle.poll() == EXIT_UNKNOWN
        events = list(handle.events())
        assert [e.event_type for e in events] == ["system", "assistant"]
        assert handle.session_id == "sess-9"
        assert all(e.fork_id == "f1" for e in events)

    def test_missing_file_of_dead_worker(self, tmp_path):
        handle = StreamFileHandle("f1", tmp_path / "never.ndjson", pid=None, poll_interval=0.01)
        assert list(handle.events()) == []


# ---------------------------------------------------------------------------
# ClaudeCliLauncher
# ---------------------------------------------------------------------------

class TestClaudeCliLauncher:
    """Tests for ClaudeCliLauncher with stand-in executables."""

    def test_is_a_worker_launcher(self, tmp_path):
        assert isinstance(ClaudeCliLauncher(tmp_path), WorkerLauncher)

    def test_launch_redirects_to_stream_file(self, tmp_path):
        true = shutil.which("true")
        if true is None:
            pytest.skip("no 'true' executable")
        launcher = ClaudeCliLauncher(tmp_path, command=true, poll_interval=0.01)
        handle = launcher.launch(_request())
        assert handle.pid is not None
        assert handle.stream_path == str(launcher.stream_path("f1"))
        assert list(handle.events()) == []
        assert handle.poll() == 0

    def test_missing_executable_raises(self, tmp_path):
        launcher = ClaudeCliLauncher(tmp_path, command=str(tmp_path / "no-such-claude"))
        with pytest.raises(OSError):
            launcher.launch(_request())

    def test_attach(self, tmp_path):
        launcher = ClaudeCliLauncher(tmp_path)
        assert launcher.attach("f1", pid=None, stream_path=None) is None
        launcher.stream_path("f1").parent.mkdir(parents=True)
        launcher.stream_path("f1").write_text("")
        handle = launcher.attach("f1", pid=None, stream_path=None)
        assert handle is not None
        assert handle.stream_path == str(launcher.stream_path("f1"))
