"""Configuration models for Offshoot.

OffshootConfig holds per-project settings.
GuardConfig controls the cascade deny-list.
LaunchOptions carries routing options through to the worker launcher.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

STATE_DIR_NAME = ".offshoot"
DB_FILE_NAME = "offshoot.db"

# Set in every worker's environment to the fork it runs for.
FORK_ENV_VAR = "OFFSHOOT_FORK_ID"

# Markers that identify a project root when walking up from the cwd.
PROJECT_MARKERS = (".claude", ".git")

# Text appended to every worker's system prompt. ``{command}`` is the
# offshoot executable and ``{fork_id}`` the fork being launched.
CALLBACK_TEMPLATE = (
    "IMPORTANT: you are running as a background fork (fork id: {fork_id}). "
    "When your task is finished, your FINAL action must be to run: "
    '`{command} done {fork_id} "<one-line summary of what you did>"`. '
    "That command is how the session that started you learns you are done. "
    "Do not start new forks yourself."
)

# Regular expressions matched (case-insensitively) against task messages.
DEFAULT_SPAWN_PATTERNS: tuple[str, ...] = (
    r"(^|[\s;&|`(\"'])offshoot\s+(spawn|message|fork)\b",
    r"python3?\s+-m\s+offshoot\s+(spawn|message)\b",
    r"^\s*/(fork|offshoot|spawn)\b",
    r"\bforkorchestrator\s*\.\s*spawn\s*\(",
)


class GuardConfig(BaseModel):
    """Deny-list used by the cascade guard."""

    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_SPAWN_PATTERNS))
    templates: list[str] = Field(default_factory=lambda: [CALLBACK_TEMPLATE])
    similarity: float = 0.9

    @field_validator("similarity")
    @classmethod
    def _check_similarity(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("similarity must be in (0, 1]")
        return v


class LaunchOptions(BaseModel):
    """Routing options handed to the worker launcher.

    The orchestrator only validates their shape; interpretation belongs to
    the launcher.
    """

    model_config = {"extra": "forbid"}

    model: Optional[str] = None
    working_dir: Optional[str] = None
    worktree: bool = False
    fork_session: bool = True
    resume_session_id: Optional[str] = None
    append_system_prompt: Optional[str] = None
    system_prompt: Optional[str] = None
    max_turns: Optional[int] = Field(default=None, ge=1)
    tools: Optional[str] = None
    allowed_tools: Optional[str] = None
    mcp_config: Optional[str] = None
    settings: Optional[str] = None
    agents: Optional[str] = None
    add_dirs: list[str] = Field(default_factory=list)
    include_partial_messages: bool = False
    env: dict[str, str] = Field(default_factory=dict)


class OffshootConfig(BaseModel):
    """Per-project configuration."""

    db_path: str = ":memory:"
    db_url: Optional[str] = None
    state_dir: Optional[str] = None
    worker_command: str = "claude"
    callback_command: str = "offshoot"
    poll_interval: float = Field(default=0.2, gt=0)
    # Seconds an active fork may go without a recorded worker before sweep fails it.
    launch_timeout: float = Field(default=60.0, gt=0)
    record_prompt: bool = True
    guard: GuardConfig = Field(default_factory=GuardConfig)

    @classmethod
    def for_project(cls, project_dir: str | os.PathLike | None = None, **overrides) -> OffshootConfig:
        """Build a config whose database lives under the project's state dir.

        Args:
            project_dir: Project root. Discovered with :func:`find_project_root`
                when omitted.
            **overrides: Field values that take precedence.
        """
        root = Path(project_dir) if project_dir is not None else find_project_root()
        state_dir = root / STATE_DIR_NAME
        values: dict = {
            "db_path": str(state_dir / DB_FILE_NAME),
            "state_dir": str(state_dir),
        }
        values.update(overrides)
        return cls(**values)

    def resolved_state_dir(self) -> Path:
        """State directory for stream files; falls back to the db's directory."""
        if self.state_dir:
            return Path(self.state_dir)
        if self.db_path and self.db_path != ":memory:":
            return Path(self.db_path).resolve().parent
        return Path.cwd() / STATE_DIR_NAME


def find_project_root(start: str | os.PathLike | None = None) -> Path:
    """Locate the project root.

    Priority:
    1. ``OFFSHOOT_PROJECT_DIR`` environment variable
    2. Nearest ancestor of *start* (default: cwd) holding a ``.claude`` or
       ``.git`` directory
    3. *start* itself
    """
    env_dir = os.environ.get("OFFSHOOT_PROJECT_DIR")
    if env_dir:
        return Path(env_dir)

    origin = Path(start) if start is not None else Path.cwd()
    origin = origin.resolve()
    for candidate in (origin, *origin.parents):
        if any((candidate / marker).is_dir() for marker in PROJECT_MARKERS):
            return candidate
    return origin
