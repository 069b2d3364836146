"""
circuit_safety/budget.py
════════════════════════

Per-task resource budget with cooperative cancellation.

The algebraic engine calls :meth:`Budget.checkpoint` after every S-pair
and periodically inside long reductions.  A checkpoint raises

* :class:`VerificationCancelled` when any registered stop event is set
  (user abort of the whole run), or
* :class:`ResourceExhausted` (``kind="time"``) once the monotonic
  deadline has passed.

A zero time budget is already exhausted at the first checkpoint, so no
result is ever published from a zero-budget run.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Iterable, Tuple

from .errors import ResourceExhausted, VerificationCancelled


@dataclass(frozen=True)
class BudgetSpec:
    """Limits applied to one algebraic invocation."""
    time_seconds: float = 5.0
    max_degree: int = 64
    max_basis_size: int = 2000
    max_variables: int = 75
    max_search_nodes: int = 4096

    def start(self, stop_events: Iterable[threading.Event] = ()) -> "Budget":
        return Budget(self, stop_events)


class Budget:
    """A running budget; not shared between tasks."""

    def __init__(
        self,
        spec: BudgetSpec,
        stop_events: Iterable[threading.Event] = (),
    ) -> None:
        self.spec = spec
        self.stop_events: Tuple[threading.Event, ...] = tuple(stop_events)
        self.started = time.monotonic()
        self.deadline = self.started + max(spec.time_seconds, 0.0)
        self.checkpoints = 0
        self.search_nodes = 0

    # ── queries ──────────────────────────────────────────────────────

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    @property
    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return any(e.is_set() for e in self.stop_events)

    # ── checks ───────────────────────────────────────────────────────

    def checkpoint(self, where: str = "") -> None:
        self.checkpoints += 1
        if self.cancelled:
            raise VerificationCancelled(where=where) if where else VerificationCancelled()
        if self.spec.time_seconds <= 0 or time.monotonic() >= self.deadline:
            raise ResourceExhausted(
                "time",
                f"time budget of {self.spec.time_seconds:g}s exhausted",
                where=where, checkpoints=self.checkpoints,
            )

    def check_degree(self, degree: int) -> None:
        if degree > self.spec.max_degree:
            raise ResourceExhausted(
                "degree",
                f"degree {degree} exceeds limit {self.spec.max_degree}",
            )

    def check_basis(self, size: int) -> None:
        if size > self.spec.max_basis_size:
            raise ResourceExhausted(
                "basis",
                f"basis size {size} exceeds limit {self.spec.max_basis_size}",
            )

    def check_variables(self, count: int) -> None:
        if count > self.spec.max_variables:
            raise ResourceExhausted(
                "variables",
                f"{count} ring variables exceed limit {self.spec.max_variables}",
            )

    def count_search_node(self) -> None:
        self.search_nodes += 1
        if self.search_nodes > self.spec.max_search_nodes:
            raise ResourceExhausted(
                "search",
                f"witness search exceeded {self.spec.max_search_nodes} nodes",
            )


def unlimited(stop_events: Iterable[threading.Event] = ()) -> Budget:
    """A generous budget for offline checks and tests."""
    spec = BudgetSpec(
        time_seconds=3600.0, max_degree=1 << 20, max_basis_size=1 << 20,
        max_variables=1 << 20, max_search_nodes=1 << 20,
    )
    return Budget(spec, stop_events)
