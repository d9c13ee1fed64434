"""Cascade guard decision model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a cascade check: allowed, or rejected with a reason."""

    allowed: bool
    reason: str | None = None
    rule: str | None = None

    @classmethod
    def allow(cls) -> GuardDecision:
        return cls(allowed=True)

    @classmethod
    def reject(cls, reason: str, rule: str | None = None) -> GuardDecision:
        return cls(allowed=False, reason=reason, rule=rule)

    def __bool__(self) -> bool:
        return self.allowed
