"""
circuit_safety/verdict.py
═════════════════════════

Three-valued verdicts and the evidence they carry.

    Verdict.SAFE     target uniquely determined      (optional ProofCertificate)
    Verdict.UNSAFE   two witnesses differ on target  (WitnessPair)
    Verdict.UNKNOWN  inconclusive                    (UnknownReason)

Aggregation (:func:`combine`): Unsafe dominates, Unknown dominates Safe,
Safe only when every part is Safe.  An empty combination is Safe: a
circuit with no outputs or intermediates has nothing to determine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


class Verdict(Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    UNKNOWN = "unknown"

    @property
    def is_conclusive(self) -> bool:
        return self is not Verdict.UNKNOWN


def combine(verdicts: Iterable[Verdict]) -> Verdict:
    result = Verdict.SAFE
    for v in verdicts:
        if v is Verdict.UNSAFE:
            return Verdict.UNSAFE
        if v is Verdict.UNKNOWN:
            result = Verdict.UNKNOWN
    return result


class UnknownReason(Enum):
    NO_APPLICABLE_RULE = "no_applicable_rule"
    TIMEOUT = "timeout"
    RESOURCE_LIMIT = "resource_limit"
    SOLVER_FAULT = "solver_fault"
    NO_RATIONAL_WITNESS = "no_rational_witness"
    UNCONFIRMED_WITNESS = "unconfirmed_witness"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ResolutionStage(Enum):
    DECOMPOSITION = "decomposition"
    HEURISTIC = "heuristic"
    ALGEBRAIC = "algebraic"
    CACHE = "cache"
    NONE = "none"


@dataclass(frozen=True)
class WitnessPair:
    """Two assignments agreeing on the parameters and differing on the target.

    ``first`` / ``second`` map signal handles to field elements.  Task
    level pairs cover the task's closure; confirmed pairs cover the whole
    model.
    """
    target: int
    first: Mapping[int, int]
    second: Mapping[int, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "first", dict(self.first))
        object.__setattr__(self, "second", dict(self.second))

    @property
    def differs_on_target(self) -> bool:
        return self.first.get(self.target, 0) != self.second.get(self.target, 0)

    def differing_signals(self) -> Tuple[int, ...]:
        keys = set(self.first) | set(self.second)
        return tuple(sorted(
            k for k in keys if self.first.get(k, 0) != self.second.get(k, 0)
        ))

    def relabel(self, mapping: Mapping[int, int]) -> "WitnessPair":
        """Rename handles; keys missing from *mapping* are dropped."""
        return WitnessPair(
            target=mapping[self.target],
            first={mapping[k]: v for k, v in self.first.items() if k in mapping},
            second={mapping[k]: v for k, v in self.second.items() if k in mapping},
        )

    def to_dict(self, names: Optional[Mapping[int, str]] = None) -> Dict[str, Any]:
        label = (lambda h: names.get(h, f"x{h}")) if names else (lambda h: str(h))
        return {
            "target": label(self.target),
            "first": {label(k): str(v) for k, v in sorted(self.first.items())},
            "second": {label(k): str(v) for k, v in sorted(self.second.items())},
        }


@dataclass(frozen=True)
class ProofCertificate:
    """Evidence that the duplicated ideal is the unit ideal.

    ``generators`` is the number of input polynomials, ``basis_size`` the
    size of the reduced basis ({1} for a proof), ``steps`` the number of
    S-pairs processed.
    """
    method: str
    term_order: str
    variables: int
    generators: int
    steps: int
    basis_size: int = 1
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "term_order": self.term_order,
            "variables": self.variables,
            "generators": self.generators,
            "steps": self.steps,
            "basis_size": self.basis_size,
            "elapsed_ms": round(self.elapsed_ms, 3),
        }


@dataclass(frozen=True)
class TaskVerdict:
    """Outcome of one verification task."""
    verdict: Verdict
    stage: ResolutionStage
    rule: Optional[str] = None
    reason: Optional[UnknownReason] = None
    witness: Optional[WitnessPair] = None
    certificate: Optional[ProofCertificate] = None
    detail: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.verdict is Verdict.UNSAFE and self.witness is None:
            raise ValueError("an unsafe verdict needs a witness pair")
        if self.verdict is Verdict.UNKNOWN and self.reason is None:
            raise ValueError("an unknown verdict needs a reason")

    @classmethod
    def safe(cls, stage: ResolutionStage, rule: Optional[str] = None,
             certificate: Optional[ProofCertificate] = None,
             detail: str = "") -> "TaskVerdict":
        return cls(Verdict.SAFE, stage, rule=rule, certificate=certificate, detail=detail)

    @classmethod
    def unsafe(cls, stage: ResolutionStage, witness: WitnessPair,
               rule: Optional[str] = None, detail: str = "") -> "TaskVerdict":
        return cls(Verdict.UNSAFE, stage, rule=rule, witness=witness, detail=detail)

    @classmethod
    def unknown(cls, stage: ResolutionStage, reason: UnknownReason,
                detail: str = "") -> "TaskVerdict":
        return cls(Verdict.UNKNOWN, stage, reason=reason, detail=detail)

    def with_stage(self, stage: ResolutionStage) -> "TaskVerdict":
        return TaskVerdict(
            self.verdict, stage, self.rule, self.reason,
            self.witness, self.certificate, self.detail, dict(self.extra),
        )

    def with_witness(self, witness: Optional[WitnessPair]) -> "TaskVerdict":
        return TaskVerdict(
            self.verdict, self.stage, self.rule, self.reason,
            witness, self.certificate, self.detail, dict(self.extra),
        )
