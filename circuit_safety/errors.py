"""
circuit_safety/errors.py
════════════════════════

Exception hierarchy for the verification engine.

    ┌──────────────────────────────────────────────────────────────────┐
    │  CircuitSafetyError (base)                                       │
    │  ├── StructuralError       malformed model          fatal        │
    │  │   └── ModelParseError   unparsable input         fatal        │
    │  ├── ConfigurationError    bad option values        fatal        │
    │  ├── ResourceExhausted     budget exceeded          → Unknown    │
    │  ├── SolverFault           engine failure           → Unknown    │
    │  └── VerificationCancelled run aborted              → Unknown    │
    └──────────────────────────────────────────────────────────────────┘

Only the *fatal* group escapes :meth:`ModularVerifier.verify`; the
others are recovered at task granularity by the orchestrator.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CircuitSafetyError(Exception):
    """Base class for every error raised by ``circuit_safety``."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        extra = ", ".join(f"{k}={v!r}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({extra})"


class StructuralError(CircuitSafetyError):
    """The constraint model is malformed (dangling reference, field mismatch...)."""


class ModelParseError(StructuralError):
    """Textual or JSON input could not be turned into a model."""

    def __init__(
        self,
        message: str,
        source: str = "",
        line: Optional[int] = None,
        column: Optional[int] = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.source = source
        self.line = line
        self.column = column

    def __str__(self) -> str:
        where = self.source
        if self.line is not None:
            where = f"{where}:{self.line}" if where else f"line {self.line}"
            if self.column is not None:
                where = f"{where}:{self.column}"
        base = super().__str__()
        return f"{where}: {base}" if where else base


class ConfigurationError(CircuitSafetyError):
    """An option value is out of range or of the wrong type."""


class ResourceExhausted(CircuitSafetyError):
    """A per-task budget was exceeded.

    ``kind`` is one of ``time``, ``degree``, ``basis``, ``variables`` or
    ``search``.
    """

    KINDS = ("time", "degree", "basis", "variables", "search")

    def __init__(self, kind: str, message: str = "", **context: Any) -> None:
        if kind not in self.KINDS:
            raise ValueError(f"unknown budget kind {kind!r}")
        super().__init__(message or f"{kind} budget exhausted", **context)
        self.kind = kind


class SolverFault(CircuitSafetyError):
    """Unexpected failure inside the algebraic engine."""

    def __init__(self, message: str, task: str = "", **context: Any) -> None:
        super().__init__(message, **context)
        self.task = task


class VerificationCancelled(CircuitSafetyError):
    """The run (or the in-flight computation) was asked to stop."""

    def __init__(self, message: str = "verification cancelled", **context: Any) -> None:
        super().__init__(message, **context)
