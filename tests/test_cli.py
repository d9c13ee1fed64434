"""CLI tests for Offshoot -- exercises every command via Click's CliRunner.

Each test uses runner.isolated_filesystem() with a file-backed database,
since the CLI opens its own connection (separate from SDK setup). A fake
launcher is passed through ``obj`` so no real worker is started.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from offshoot.cli import cli
from offshoot.models.config import CALLBACK_TEMPLATE, FORK_ENV_VAR
from offshoot.models.fork import ForkStatus
from offshoot.orchestrator import ForkOrchestrator
from offshoot.store import Store
from tests.conftest import FakeLauncher


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner(monkeypatch):
    """Create a Click test runner outside of any fork or session."""
    for var in (FORK_ENV_VAR, "OFFSHOOT_SESSION_ID", "CLAUDE_SESSION_ID", "OFFSHOOT_DB"):
        monkeypatch.delenv(var, raising=False)
    return CliRunner()


def _invoke(runner: CliRunner, args: list[str], launcher: FakeLauncher | None = None):
    obj = {"launcher": launcher or FakeLauncher()}
    return runner.invoke(cli, ["--db", "test.db", "--project", ".", *args], obj=obj)


def _setup_forks(db_path: str) -> dict[str, str]:
    """Create three forks for session S1 with the SDK, then close it.

    Returns {"done": ..., "failed": ..., "running": ...} fork ids.
    """
    store = Store.open(db_path)
    launcher = FakeLauncher()
    orch = ForkOrchestrator(store, launcher)
    try:
        ids = {key: orch.spawn("S1", f"Task {key}") for key in ("done", "failed", "running")}
        for fork_id in ids.values():
            orch.join(fork_id, timeout=5)
        orch.complete(ids["done"], "added 12 tests")
        orch.mark_failed(ids["failed"], "exit 2")
    finally:
        orch.close()
        store.close()
    return ids


# ---------------------------------------------------------------------------
# spawn / message
# ---------------------------------------------------------------------------

class TestSpawnCommand:
    """Tests for offshoot spawn."""

    def test_spawn_foreground(self, runner: CliRunner):
        with runner.isolated_filesystem():
            launcher = FakeLauncher()
            result = _invoke(
                runner,
                ["spawn", "--session", "S1", "--foreground", "--model", "sonnet", "Write", "tests"],
                launcher,
            )
            assert result.exit_code == 0, result.output
            [request] = launcher.requests
            assert request.message == "Write tests"
            assert request.options.model == "sonnet"
            assert request.parent_session_id == "S1"
            assert request.fork_id in result.output

    def test_spawn_env_pairs(self, runner: CliRunner):
        with runner.isolated_filesystem():
            launcher = FakeLauncher()
            result = _invoke(
                runner,
                ["spawn", "--session", "S1", "--foreground", "--env", "A=1", "--add-dir", "/x", "Task"],
                launcher,
            )
            assert result.exit_code == 0, result.output
            opts = launcher.requests[0].options
            assert opts.env == {"A": "1"}
            assert opts.add_dirs == ["/x"]

    def test_spawn_bad_env_pair(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["spawn", "--foreground", "--env", "nope", "Task"])
            assert result.exit_code != 0

    def test_spawn_rejected_inside_fork(self, runner: CliRunner):
        with runner.isolated_filesystem():
            launcher = FakeLauncher()
            result = runner.invoke(
                cli,
                ["--db", "test.db", "--project", ".", "spawn", "--foreground", "Task"],
                obj={"launcher": launcher},
                env={FORK_ENV_VAR: "abc12345"},
            )
            assert result.exit_code == 1
            assert "rejected" in result.output.lower()
            assert launcher.requests == []

    def test_spawn_rejects_template(self, runner: CliRunner):
        with runner.isolated_filesystem():
            text = CALLBACK_TEMPLATE.format(fork_id="x", command="offshoot")
            result = _invoke(runner, ["spawn", "--foreground", text])
            assert result.exit_code == 1
            assert "error" in result.output.lower()

    def test_spawn_launch_failure(self, runner: CliRunner):
        with runner.isolated_filesystem():
            launcher = FakeLauncher(fail_with=FileNotFoundError("claude"))
            result = _invoke(runner, ["spawn", "--session", "S1", "--foreground", "Task"], launcher)
            assert result.exit_code == 1
            assert "failed to launch" in result.output.lower()


class TestMessageCommand:
    """Tests for offshoot message."""

    def test_message_last(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            launcher = FakeLauncher()
            result = _invoke(
                runner, ["message", "--last", "--session", "S1", "--foreground", "Follow", "up"], launcher
            )
            assert result.exit_code == 0, result.output
            [request] = launcher.requests
            assert request.message == "Follow up"
            assert request.options.fork_session is False
            assert request.options.resume_session_id is not None
            assert request.fork_id not in ids.values()

    def test_message_needs_a_target(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["message", "hello"])
            assert result.exit_code == 2

    def test_message_unknown_fork(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["message", "--fork", "missing", "--foreground", "hello"])
            assert result.exit_code == 1
            assert "not found" in result.output.lower()


# ---------------------------------------------------------------------------
# done / fail
# ---------------------------------------------------------------------------

class TestDoneCommand:
    """Tests for offshoot done and offshoot fail."""

    def test_done_then_done_again(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            first = _invoke(runner, ["done", ids["running"], "wrote", "docs"])
            assert first.exit_code == 0, first.output
            assert "completed" in first.output.lower()

            second = _invoke(runner, ["done", ids["running"], "again"])
            assert second.exit_code == 0
            assert "no change" in second.output.lower()

            with Store.open("test.db") as store:
                fork = ForkOrchestrator(store, FakeLauncher()).get_fork(ids["running"])
            assert fork.status == ForkStatus.COMPLETED

    def test_fail(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["fail", ids["running"], "timed", "out"])
            assert result.exit_code == 0, result.output
            with Store.open("test.db") as store:
                fork = ForkOrchestrator(store, FakeLauncher()).get_fork(ids["running"])
            assert fork.failure_reason == "timed out"

    def test_done_unknown_fork(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["done", "missing", "x"])
            assert result.exit_code == 1
            assert "not found" in result.output.lower()


# ---------------------------------------------------------------------------
# list / messages / read
# ---------------------------------------------------------------------------

class TestListCommands:
    """Tests for offshoot list forks|sessions|jobs."""

    def test_list_forks(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["list", "forks"])
            assert result.exit_code == 0, result.output
            for fork_id in ids.values():
                assert fork_id in result.output

    def test_list_forks_by_status(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["list", "forks", "--status", "completed"])
            assert result.exit_code == 0, result.output
            assert ids["done"] in result.output
            assert ids["failed"] not in result.output

    def test_list_forks_empty(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["list", "forks"])
            assert result.exit_code == 0
            assert "no forks" in result.output.lower()

    def test_list_jobs(self, runner: CliRunner):
        with runner.isolated_filesystem():
            _setup_forks("test.db")
            result = _invoke(runner, ["list", "jobs"])
            assert result.exit_code == 0, result.output
            assert "added 12 tests" in result.output

    def test_list_sessions(self, runner: CliRunner):
        with runner.isolated_filesystem():
            _setup_forks("test.db")
            result = _invoke(runner, ["list", "sessions"])
            assert result.exit_code == 0, result.output
            assert "S1" in result.output


class TestMessagesCommand:
    """Tests for offshoot messages."""

    def test_messages_in_order(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["messages", ids["done"]])
            assert result.exit_code == 0, result.output
            assert result.output.index("prompt") < result.output.index("Done reading")

    def test_messages_json(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["messages", ids["done"], "--json", "-n", "2"])
            assert result.exit_code == 0, result.output
            rows = [json.loads(line) for line in result.output.splitlines()]
            assert len(rows) == 2
            assert rows[-1]["text"] == "Done reading"


class TestReadCommand:
    """Tests for offshoot read."""

    def test_read_all(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["read", "--all"])
            assert result.exit_code == 0, result.output
            unread = _invoke(runner, ["list", "forks", "--unread"])
            assert ids["done"] not in unread.output
            assert ids["failed"] not in unread.output
            assert ids["running"] not in unread.output
            again = _invoke(runner, ["read", ids["running"]])
            assert "no change" in again.output.lower()

    def test_read_one(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["read", ids["running"]])
            assert result.exit_code == 0, result.output
            assert "marked read" in result.output.lower()

    def test_read_needs_target(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = _invoke(runner, ["read"])
            assert result.exit_code == 2


# ---------------------------------------------------------------------------
# notify / sweep / follow
# ---------------------------------------------------------------------------

class TestNotifyCommand:
    """Tests for offshoot notify."""

    def test_notify_drains_once(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            first = _invoke(runner, ["notify", "--session", "S1"])
            assert first.exit_code == 0, first.output
            assert ids["done"] in first.output
            assert "added 12 tests" in first.output
            assert ids["failed"] in first.output

            second = _invoke(runner, ["notify", "--session", "S1"])
            assert "no notifications" in second.output.lower()

    def test_notify_hook_json(self, runner: CliRunner):
        with runner.isolated_filesystem():
            ids = _setup_forks("test.db")
            result = _invoke(runner, ["notify", "--session", "S1", "--hook"])
            assert result.exit_code == 0, result.output
            payload = json.loads(result.output)
            assert payload["decision"] == "block"
            assert ids["done"] in payload["reason"]

            quiet = _invoke(runner, ["notify", "--session", "S1", "--hook"])
            assert quiet.output.strip() == ""

    def test_notify_session_from_env(self, runner: CliRunner):
        with runner.isolated_filesystem():
            _setup_forks("test.db")
            result = runner.invoke(
                cli,
                ["--db", "test.db", "--project", ".", "notify"],
                obj={"launcher": FakeLauncher()},
                env={"OFFSHOOT_SESSION_ID": "S1"},
            )
            assert result.exit_code == 0, result.output
            assert "added 12 tests" in result.output


class TestSweepCommand:
    """Tests for offshoot sweep and offshoot follow."""

    def test_sweep_without_live_handles(self, runner: CliRunner):
        with runner.isolated_filesystem():
            _setup_forks("test.db")
            result = _invoke(runner, ["sweep"])
            assert result.exit_code == 0, result.output

    def test_follow_ingests_and_fails_silent_worker(self, runner: CliRunner):
        with runner.isolated_filesystem():
            store = Store.open("test.db")
            launcher = FakeLauncher(exit_code=5)
            orch = ForkOrchestrator(store, launcher)
            fork_id = orch.spawn("S1", "Task", ingest=False)
            orch.close()
            store.close()

            result = _invoke(runner, ["follow", fork_id], launcher)
            assert result.exit_code == 0, result.output
            assert "exit 5" in result.output


class TestGlobalOptions:
    """Tests for the cli group itself."""

    def test_version(self, runner: CliRunner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "offshoot" in result.output

    def test_help_lists_commands(self, runner: CliRunner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in ("spawn", "message", "done", "fail", "list", "messages", "read", "notify", "sweep", "follow"):
            assert name in result.output
