"""Detection of the current agent session id.

Priority order:

1. ``OFFSHOOT_SESSION_ID`` environment variable
2. ``CLAUDE_SESSION_ID`` environment variable
3. ``.claude/current-session.json`` (``{"sessionId": ...}``) in the start
   directory or any ancestor, then in the home directory
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SESSION_ENV_VARS = ("OFFSHOOT_SESSION_ID", "CLAUDE_SESSION_ID")
SESSION_FILE = Path(".claude") / "current-session.json"


def _read_session_file(path: Path) -> Optional[str]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable session file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    value = data.get("sessionId") or data.get("session_id")
    return value if isinstance(value, str) and value.strip() else None


def detect_session_id(start: str | os.PathLike | None = None) -> Optional[str]:
    """Best-effort lookup of the session that is invoking offshoot."""
    for var in SESSION_ENV_VARS:
        value = os.environ.get(var, "").strip()
        if value:
            return value

    origin = Path(start) if start is not None else Path.cwd()
    candidates = [origin.resolve(), *origin.resolve().parents]
    home = Path.home()
    if home not in candidates:
        candidates.append(home)

    for directory in candidates:
        path = directory / SESSION_FILE
        if path.is_file():
            session_id = _read_session_file(path)
            if session_id:
                return session_id
    return None
