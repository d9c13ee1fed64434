"""Cascade guard.

Refuses spawn requests that look like a fork trying to start more forks.
This is a best-effort heuristic over the request text, not a guarantee:

1. A request made from inside a fork (an ``origin_fork_id`` is known) is
   rejected outright.
2. The message is matched against a deny-list of regular expressions that
   recognise invocations of the spawn entry points.
3. The message is compared with known spawn command templates after
   whitespace/case normalisation; a similarity ratio at or above the
   configured threshold rejects it.

Anything else is allowed.

The default patterns are loose on purpose: they match any mention of an
``offshoot spawn`` command, so task text such as "document how offshoot
spawn works" is refused too. Projects that need to talk about offshoot in
task messages should set ``GuardConfig.patterns`` to a narrower list (for
example, only the ``/fork`` slash command) and rely on the origin check.
"""

from __future__ import annotations

import difflib
import logging
import re
from typing import Optional

from offshoot.models.config import GuardConfig
from offshoot.models.guard import GuardDecision

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase and collapse runs of whitespace."""
    return _WS_RE.sub(" ", text).strip().lower()


class CascadeGuard:
    """Configurable deny-list check for spawn requests."""

    def __init__(self, config: GuardConfig | None = None) -> None:
        self._config = config or GuardConfig()
        self._patterns = [
            (raw, re.compile(raw, re.IGNORECASE | re.MULTILINE))
            for raw in self._config.patterns
        ]
        self._templates = [normalize(t) for t in self._config.templates if t.strip()]

    @property
    def config(self) -> GuardConfig:
        return self._config

    def check(self, message: str, *, origin_fork_id: Optional[str] = None) -> GuardDecision:
        """Decide whether *message* may be spawned as a new fork."""
        if origin_fork_id:
            return self._reject(
                f"request originates inside fork {origin_fork_id}", "origin"
            )

        for raw, pattern in self._patterns:
            if pattern.search(message):
                return self._reject("message invokes a fork entry point", raw)

        candidate = normalize(message)
        if not candidate:
            return GuardDecision.allow()
        for template in self._templates:
            if candidate == template:
                return self._reject("message is a known spawn template", "template")
            ratio = difflib.SequenceMatcher(None, candidate, template).ratio()
            if ratio >= self._config.similarity:
                return self._reject(
                    f"message is {ratio:.0%} similar to a spawn template", "template"
                )
        return GuardDecision.allow()

    def _reject(self, reason: str, rule: str) -> GuardDecision:
        logger.warning("Cascade guard rejected spawn: %s", reason)
        return GuardDecision.reject(reason, rule)
