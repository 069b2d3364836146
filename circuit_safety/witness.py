"""
circuit_safety/witness.py
═════════════════════════

Completion of task-level witness pairs to full-model witnesses.

A task only sees its closure, so its witness pair fixes a handful of
signals.  Before a circuit is reported Unsafe, both assignments are
extended to every signal such that *all* model constraints hold and the
two witnesses still agree on every input::

    partial ─► propagate: constraints left with one linear unknown
               ├── non-zero constant   → no extension
               └── still open          → inputs default to 0, propagate again
    residual system ─► split into connected components
                       → lex basis + point per component
    unconstrained signals              → 0

Propagation follows ``<==`` chains of any length without touching the
algebraic engine or the time budget; only what it cannot solve goes to
Gröbner bases.

The second witness is first tried as "the first completion with the
task's values patched in"; only if that fails is it solved on its own,
with the inputs pinned to the first witness.
"""

from __future__ import annotations

import logging
import random
import threading
from collections import deque
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Set

from .budget import Budget, BudgetSpec
from .constraint_model import ConstraintModel
from .errors import ResourceExhausted, VerificationCancelled
from .field import inverse
from .groebner import LEX, GroebnerEngine
from .polynomial import Polynomial
from .verdict import WitnessPair

logger = logging.getLogger(__name__)


def _components(polys: List[Polynomial]) -> List[List[Polynomial]]:
    """Group polynomials that share variables (union–find)."""
    parent: Dict[int, int] = {}

    def find(v: int) -> int:
        while parent[v] != v:
            parent[v] = parent[parent[v]]
            v = parent[v]
        return v

    for poly in polys:
        vars_ = sorted(poly.variables)
        for v in vars_:
            parent.setdefault(v, v)
        for v in vars_[1:]:
            a, b = find(vars_[0]), find(v)
            if a != b:
                parent[max(a, b)] = min(a, b)

    groups: Dict[int, List[Polynomial]] = {}
    for poly in polys:
        root = find(min(poly.variables))
        groups.setdefault(root, []).append(poly)
    return [groups[k] for k in sorted(groups)]


class WitnessCompleter:
    """Extends partial assignments over one model."""

    def __init__(self, model: ConstraintModel, spec: BudgetSpec, seed: int = 0) -> None:
        self.model = model
        self.spec = spec
        self.seed = seed
        self._inputs = sorted(model.parameter_handles())
        self._touching: Dict[int, List[int]] = {}
        for con in model.constraints:
            for v in con.variables:
                self._touching.setdefault(v, []).append(con.index)

    # ── propagation ──────────────────────────────────────────────────

    def _propagate(self, values: Dict[int, int], budget: Budget) -> bool:
        """Solve every constraint left with a single linear unknown.

        Updates *values* in place; ``False`` when a constraint reduces to
        a non-zero constant.
        """
        p = self.model.prime
        queue: Deque[int] = deque(con.index for con in self.model.constraints)
        queued: Set[int] = set(queue)
        steps = 0
        while queue:
            if steps % 256 == 0 and budget.cancelled:
                raise VerificationCancelled(where="witness propagation")
            steps += 1
            ci = queue.popleft()
            queued.discard(ci)
            rest = self.model.constraint(ci).polynomial.substitute(values)
            if rest.is_zero:
                continue
            if rest.is_constant:
                logger.debug("assignment violates constraint %d", ci)
                return False
            if len(rest.variables) != 1 or not rest.is_linear:
                continue
            (v,) = rest.variables
            values[v] = (-rest.constant_term) * inverse(rest.linear_coefficient(v), p) % p
            for other in self._touching.get(v, ()):
                if other not in queued:
                    queued.add(other)
                    queue.append(other)
        return True

    def _residual(self, values: Mapping[int, int]) -> Optional[List[Polynomial]]:
        residual: List[Polynomial] = []
        for con in self.model.constraints:
            rest = con.polynomial.substitute(values)
            if rest.is_zero:
                continue
            if rest.is_constant:
                return None
            residual.append(rest)
        return residual

    # ── completion ───────────────────────────────────────────────────

    def complete(
        self,
        partial: Mapping[int, int],
        budget: Budget,
        preferred: Optional[Mapping[int, int]] = None,
    ) -> Optional[Dict[int, int]]:
        """Full witness extending *partial*, or ``None`` if none was found."""
        p = self.model.prime
        values: Dict[int, int] = dict(self.model.constant_assignment())
        values.update({k: v % p for k, v in partial.items()})
        if not self._propagate(values, budget):
            return None
        residual = self._residual(values)
        if residual is None:
            return None

        if residual:
            guess = dict(values)
            for h in self._inputs:
                guess.setdefault(h, (preferred or {}).get(h, 0))
            if self._propagate(guess, budget):
                rest = self._residual(guess)
                if rest is not None:
                    values, residual = guess, rest

        rng = random.Random(f"{self.seed}:{sorted(partial.items())}")
        for group in _components(residual):
            budget.checkpoint("witness completion")
            ring = sorted({v for poly in group for v in poly.variables}, reverse=True)
            budget.check_variables(len(ring))
            engine = GroebnerEngine(p, ring, LEX)
            result = engine.basis(group, budget)
            if result.is_unit:
                return None
            try:
                point = engine.find_point(result, budget, rng, preferred)
            except ResourceExhausted as exc:
                if exc.kind != "search":
                    raise
                point = None
            if point is None:
                return None
            values.update(point)

        for sig in self.model.signals:
            values.setdefault(sig.index, 0)
        return values

    def confirm(
        self,
        pair: WitnessPair,
        stop_events: Iterable[threading.Event] = (),
    ) -> Optional[WitnessPair]:
        """Complete both halves of *pair*; ``None`` if either fails."""
        budget = self.spec.start(stop_events)
        first = self.complete(pair.first, budget)
        if first is None:
            return None

        patched = dict(first)
        patched.update(pair.second)
        if self.model.is_satisfied_by(patched):
            second: Optional[Dict[int, int]] = patched
        else:
            pinned = {h: first[h] for h in self._inputs}
            pinned.update(pair.second)
            second = self.complete(pinned, budget, preferred=first)
        if second is None:
            return None
        confirmed = WitnessPair(pair.target, first, second)
        if not confirmed.differs_on_target:
            return None
        return confirmed
