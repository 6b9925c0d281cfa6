"""
Outcome values for best-effort operations.

Cache writes, usage counters and request logging must never break the
request path. Instead of silently swallowing exceptions, those
operations return an OpResult that says what actually happened:

  • OK        — the operation fully succeeded.
  • DEGRADED  — part of it failed (e.g. L1 written, L2 write failed);
                the caller carries on, the failure has been logged.
  • FATAL     — nothing was done; still never raised to the caller.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Outcome(str, enum.Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class OpResult:
    outcome: Outcome = Outcome.OK
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def degraded(cls, exc: BaseException) -> OpResult:
        return cls(Outcome.DEGRADED, f"{type(exc).__name__}: {exc}")

    @classmethod
    def fatal(cls, exc: BaseException) -> OpResult:
        return cls(Outcome.FATAL, f"{type(exc).__name__}: {exc}")


OK = OpResult()
