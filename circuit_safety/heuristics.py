"""
circuit_safety/heuristics.py
════════════════════════════

Cheap, sound rules that settle most verification tasks without algebra.

    ┌────┬────────────────────────┬─────────────────────────────────────┐
    │ #  │ RuleKind               │ conclusion                          │
    ├────┼────────────────────────┼─────────────────────────────────────┤
    │ 1  │ FREE_SIGNAL            │ Unsafe  (closure empty)             │
    │ 2  │ DIRECT_ASSIGNMENT      │ Safe    (c·t + f(params) = 0)       │
    │ 3  │ LINEAR_SOLVE           │ Safe    (e_t in linear row space)   │
    │ 4  │ BOOLEAN_DECOMPOSITION  │ Safe    (bits + binary recomposer)  │
    └────┴────────────────────────┴─────────────────────────────────────┘

Rules run in the order above and the first conclusive answer wins.  A
rule only answers Unsafe when it can hand over a concrete witness pair;
every other failure to match is Unknown, which escalates the task to the
algebraic verifier.

Adding a rule means adding a ``RuleKind`` member and an evaluator method
to :attr:`HeuristicChecker._EVALUATORS`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .decomposer import VerificationTask
from .field import inverse, power_of_two_exponent
from .polynomial import Polynomial
from .verdict import ResolutionStage, TaskVerdict, UnknownReason, WitnessPair

logger = logging.getLogger(__name__)


class RuleKind(Enum):
    FREE_SIGNAL = "free_signal"
    DIRECT_ASSIGNMENT = "direct_assignment"
    LINEAR_SOLVE = "linear_solve"
    BOOLEAN_DECOMPOSITION = "boolean_decomposition"

    @classmethod
    def parse(cls, text: str) -> "RuleKind":
        key = text.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        raise ValueError(f"unknown heuristic rule {text!r}")


RULE_PRIORITY: Tuple[RuleKind, ...] = (
    RuleKind.FREE_SIGNAL,
    RuleKind.DIRECT_ASSIGNMENT,
    RuleKind.LINEAR_SOLVE,
    RuleKind.BOOLEAN_DECOMPOSITION,
)


def free_witness(target: int) -> WitnessPair:
    """Trivial pair for an unconstrained signal."""
    return WitnessPair(target, {target: 0}, {target: 1})


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — SHAPE HELPERS
# ═══════════════════════════════════════════════════════════════════

def _only_params(poly: Polynomial, params: FrozenSet[int]) -> bool:
    return poly.variables <= params


def _linear_in_unknowns(
    poly: Polynomial, unknowns: FrozenSet[int]
) -> Optional[Dict[int, int]]:
    """Unknown coefficients if every unknown occurs only as ``c·u``.

    Parameters may appear in the unknown-free part only.
    """
    coeffs: Dict[int, int] = {}
    for mono, c in poly.items():
        touched = [v for v, _ in mono if v in unknowns]
        if not touched:
            continue
        if len(mono) != 1 or mono[0][1] != 1:
            return None
        coeffs[mono[0][0]] = c
    return coeffs


def _boolean_signal(poly: Polynomial) -> Optional[int]:
    """Return ``u`` if *poly* is ``k·(u² − u)``."""
    terms = poly.terms
    if len(terms) != 2:
        return None
    squares = [m for m in terms if len(m) == 1 and m[0][1] == 2]
    if len(squares) != 1:
        return None
    u = squares[0][0][0]
    k = terms[squares[0]]
    linear = ((u, 1),)
    if linear not in terms:
        return None
    if (terms[linear] + k) % poly.prime:
        return None
    return u


def _rref_rows(
    rows: Sequence[Dict[int, int]], columns: Sequence[int], prime: int
) -> List[Dict[int, int]]:
    """Gauss–Jordan elimination of sparse rows over GF(prime)."""
    work = [dict(r) for r in rows if r]
    reduced: List[Dict[int, int]] = []
    for col in columns:
        pivot_at = next((i for i, r in enumerate(work) if r.get(col)), None)
        if pivot_at is None:
            continue
        pivot = work.pop(pivot_at)
        scale = inverse(pivot[col], prime)
        pivot = {k: v * scale % prime for k, v in pivot.items() if v * scale % prime}
        for group in (work, reduced):
            for i, r in enumerate(group):
                factor = r.get(col)
                if not factor:
                    continue
                merged = dict(r)
                for k, v in pivot.items():
                    nv = (merged.get(k, 0) - factor * v) % prime
                    if nv:
                        merged[k] = nv
                    else:
                        merged.pop(k, None)
                group[i] = merged
        reduced.append(pivot)
        work = [r for r in work if r]
    return reduced


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — CHECKER
# ═══════════════════════════════════════════════════════════════════

class HeuristicChecker:
    """Evaluates the enabled rules in priority order.

    Usage
    -----
    >>> checker = HeuristicChecker()
    >>> checker.disable(RuleKind.BOOLEAN_DECOMPOSITION)
    >>> verdict = checker.check(task)
    """

    def __init__(
        self,
        enabled: Optional[Iterable[RuleKind]] = None,
        max_linear_rows: int = 256,
    ) -> None:
        self._disabled = set(RuleKind) - set(enabled if enabled is not None else RuleKind)
        self.max_linear_rows = max_linear_rows

    def disable(self, rule: RuleKind) -> None:
        self._disabled.add(rule)

    def enable(self, rule: RuleKind) -> None:
        self._disabled.discard(rule)

    @property
    def enabled_rules(self) -> List[RuleKind]:
        return [r for r in RULE_PRIORITY if r not in self._disabled]

    def check(self, task: VerificationTask) -> TaskVerdict:
        for rule in self.enabled_rules:
            outcome = self._EVALUATORS[rule](self, task)
            if outcome is not None:
                logger.debug(
                    "rule %s settled target %d: %s",
                    rule.value, task.target, outcome.verdict.value,
                )
                return outcome
        return TaskVerdict.unknown(
            ResolutionStage.HEURISTIC,
            UnknownReason.NO_APPLICABLE_RULE,
            detail=f"no rule among {[r.value for r in self.enabled_rules]} applies",
        )

    # ── evaluators ───────────────────────────────────────────────────

    def _free_signal(self, task: VerificationTask) -> Optional[TaskVerdict]:
        if any(not p.is_zero for p in task.polynomials):
            return None
        return TaskVerdict.unsafe(
            ResolutionStage.HEURISTIC,
            free_witness(task.target),
            rule=RuleKind.FREE_SIGNAL.value,
            detail="no constraint mentions the target",
        )

    def _direct_assignment(self, task: VerificationTask) -> Optional[TaskVerdict]:
        t = task.target
        for idx, poly in zip(task.constraint_indices, task.polynomials):
            if t not in poly.variables:
                continue
            with_t, rest = poly.split(lambda m: any(v == t for v, _ in m))
            if len(with_t) != 1 or with_t.linear_coefficient(t) == 0:
                continue
            if _only_params(rest, task.parameters):
                return TaskVerdict.safe(
                    ResolutionStage.HEURISTIC,
                    rule=RuleKind.DIRECT_ASSIGNMENT.value,
                    detail=f"constraint {idx} assigns the target",
                )
        return None

    def _linear_solve(self, task: VerificationTask) -> Optional[TaskVerdict]:
        rows: List[Dict[int, int]] = []
        for poly in task.polynomials:
            coeffs = _linear_in_unknowns(poly, task.unknowns)
            if coeffs:
                rows.append(coeffs)
            if len(rows) >= self.max_linear_rows:
                break
        if not any(task.target in r for r in rows):
            return None
        columns = [task.target] + sorted(task.unknowns - {task.target})
        for row in _rref_rows(rows, columns, task.prime):
            if set(row) == {task.target}:
                return TaskVerdict.safe(
                    ResolutionStage.HEURISTIC,
                    rule=RuleKind.LINEAR_SOLVE.value,
                    detail=f"solved from {len(rows)} linear constraints",
                )
        return None

    def _boolean_decomposition(self, task: VerificationTask) -> Optional[TaskVerdict]:
        booleans = {
            u for u in (_boolean_signal(p) for p in task.polynomials)
            if u is not None and u in task.unknowns
        }
        if task.target not in booleans:
            return None
        for idx, poly in zip(task.constraint_indices, task.polynomials):
            coeffs = _linear_in_unknowns(poly, task.unknowns)
            if not coeffs or task.target not in coeffs:
                continue
            if not set(coeffs) <= booleans:
                continue
            if _is_binary_recomposition(list(coeffs.values()), task.prime):
                return TaskVerdict.safe(
                    ResolutionStage.HEURISTIC,
                    rule=RuleKind.BOOLEAN_DECOMPOSITION.value,
                    detail=f"constraint {idx} recomposes {len(coeffs)} bits",
                )
        return None

    _EVALUATORS: Dict[RuleKind, Callable[["HeuristicChecker", VerificationTask],
                                         Optional[TaskVerdict]]] = {
        RuleKind.FREE_SIGNAL: _free_signal,
        RuleKind.DIRECT_ASSIGNMENT: _direct_assignment,
        RuleKind.LINEAR_SOLVE: _linear_solve,
        RuleKind.BOOLEAN_DECOMPOSITION: _boolean_decomposition,
    }


def _is_binary_recomposition(coefficients: List[int], prime: int) -> bool:
    """``coefficients == s·[2^e1, 2^e2, ...]`` with distinct ``e`` and Σ 2^e < p."""
    for scalar in coefficients:
        inv = inverse(scalar, prime)
        exponents = []
        for c in coefficients:
            e = power_of_two_exponent(c * inv % prime)
            if e is None:
                break
            exponents.append(e)
        else:
            if len(set(exponents)) == len(exponents) and sum(1 << e for e in exponents) < prime:
                return True
    return False
