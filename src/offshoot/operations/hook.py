"""Rendering of drained notifications for agent hooks.

A stop hook prints a JSON decision; ``"block"`` keeps the parent session
running so it sees the ``reason`` text on its next turn.
"""

from __future__ import annotations

import json
from typing import Sequence

from offshoot.models.notification import Notification, NotificationKind


def render_text(notices: Sequence[Notification]) -> str:
    """Plain multi-line summary of *notices*."""
    lines = []
    for notice in notices:
        marker = "failed" if notice.kind == NotificationKind.FAILED else "done"
        lines.append(f"  - {notice.fork_id} ({marker}): {notice.summary}")
    return "\n".join(lines)


def render_hook(notices: Sequence[Notification]) -> str | None:
    """Stop-hook JSON for *notices*, or None when there is nothing to report."""
    if not notices:
        return None
    reason = (
        "Background fork(s) finished:\n"
        + render_text(notices)
        + "\nPlease acknowledge these results."
    )
    return json.dumps({"decision": "block", "reason": reason})
