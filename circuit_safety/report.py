"""
circuit_safety/report.py
════════════════════════

The verification report and its renderings.

    VerificationReport
    ├── verdict, cancelled, short_circuited
    ├── plan / stats / config summaries
    └── tasks: [TaskResult, ...]        one per output / intermediate

``to_dict()`` / ``to_json()`` give a machine-readable document;
``to_text()`` a coloured terminal listing (termcolor) that details every
Unsafe and Unknown signal with its location, reason, closure and
witness values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from termcolor import colored

from .constraint_model import ConstraintModel
from .field import format_element
from .verdict import ProofCertificate, Verdict, WitnessPair

_VERDICT_STYLE = {
    Verdict.SAFE: ("green", ["bold"]),
    Verdict.UNSAFE: ("red", ["bold"]),
    Verdict.UNKNOWN: ("yellow", ["bold"]),
}


def _paint(text: str, color: Optional[str], attrs: Optional[List[str]], enabled: bool) -> str:
    if not enabled or color is None:
        return text
    return colored(text, color, attrs=attrs, force_color=True)


@dataclass
class TaskResult:
    """Reportable view of one resolved task."""
    target: int
    name: str
    role: str
    scope: str
    cluster: int
    verdict: Verdict
    stage: str
    rule: Optional[str] = None
    reason: Optional[str] = None
    detail: str = ""
    constraints: Tuple[int, ...] = ()
    closure_signals: Tuple[int, ...] = ()
    locations: Tuple[str, ...] = ()
    witness: Optional[WitnessPair] = None
    certificate: Optional[ProofCertificate] = None
    cache_hit: bool = False
    history: Tuple[str, ...] = ()
    heuristic_ms: float = 0.0
    algebraic_ms: float = 0.0
    total_ms: float = 0.0

    @classmethod
    def from_record(cls, model: ConstraintModel, record: Any) -> "TaskResult":
        sig = model.signal(record.target)
        v = record.verdict
        task = record.task
        if task is not None:
            constraints = task.constraint_indices
            closure = tuple(sorted(task.unknowns | task.parameters))
        else:
            constraints = ()
            closure = (record.target,)
        locations = []
        for ci in constraints:
            text = str(model.constraint(ci).provenance)
            if text and text not in locations:
                locations.append(text)
        return cls(
            target=record.target,
            name=sig.name,
            role=sig.role.value,
            scope=sig.scope,
            cluster=record.cluster,
            verdict=v.verdict,
            stage=v.stage.value,
            rule=v.rule,
            reason=v.reason.value if v.reason is not None else None,
            detail=v.detail,
            constraints=tuple(constraints),
            closure_signals=closure,
            locations=tuple(locations),
            witness=v.witness,
            certificate=v.certificate,
            cache_hit=record.cache_hit,
            history=tuple(s.value for s in record.history),
            heuristic_ms=record.heuristic_ms,
            algebraic_ms=record.algebraic_ms,
            total_ms=record.total_ms,
        )

    def to_dict(self, names: Optional[Mapping[int, str]] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "target": self.name,
            "handle": self.target,
            "role": self.role,
            "scope": self.scope,
            "cluster": self.cluster,
            "verdict": self.verdict.value,
            "stage": self.stage,
            "rule": self.rule,
            "reason": self.reason,
            "detail": self.detail,
            "constraints": list(self.constraints),
            "locations": list(self.locations),
            "cache_hit": self.cache_hit,
            "history": list(self.history),
            "timings_ms": {
                "heuristic": round(self.heuristic_ms, 3),
                "algebraic": round(self.algebraic_ms, 3),
                "total": round(self.total_ms, 3),
            },
        }
        if self.witness is not None:
            out["witness"] = self.witness.to_dict(names)
        if self.certificate is not None:
            out["certificate"] = self.certificate.to_dict()
        return out


@dataclass
class VerificationReport:
    model_name: str
    prime: int
    verdict: Verdict
    tasks: List[TaskResult]
    cancelled: bool = False
    short_circuited: bool = False
    plan: Dict[str, Any] = field(default_factory=dict)
    stats: Dict[str, int] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    signal_names: Dict[int, str] = field(default_factory=dict)

    # ── queries ──────────────────────────────────────────────────────

    def task(self, name: str) -> TaskResult:
        for t in self.tasks:
            if t.name == name:
                return t
        raise KeyError(name)

    def by_verdict(self, verdict: Verdict) -> List[TaskResult]:
        return [t for t in self.tasks if t.verdict is verdict]

    @property
    def unsafe(self) -> List[TaskResult]:
        return self.by_verdict(Verdict.UNSAFE)

    @property
    def unknown(self) -> List[TaskResult]:
        return self.by_verdict(Verdict.UNKNOWN)

    def counts(self) -> Dict[str, Dict[str, int]]:
        verdicts: Dict[str, int] = {v.value: 0 for v in Verdict}
        stages: Dict[str, int] = {}
        for t in self.tasks:
            verdicts[t.verdict.value] += 1
            stages[t.stage] = stages.get(t.stage, 0) + 1
        return {"verdicts": verdicts, "stages": stages}

    # ── machine-readable ─────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuit": self.model_name,
            "prime": str(self.prime),
            "verdict": self.verdict.value,
            "cancelled": self.cancelled,
            "short_circuited": self.short_circuited,
            "counts": self.counts(),
            "plan": self.plan,
            "stats": self.stats,
            "config": self.config,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "tasks": [t.to_dict(self.signal_names) for t in self.tasks],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    # ── human-readable ───────────────────────────────────────────────

    def summary_line(self, color: bool = False) -> str:
        counts = self.counts()
        c, a = _VERDICT_STYLE[self.verdict]
        head = _paint(self.verdict.value.upper(), c, a, color)
        parts = ", ".join(f"{n} {k}" for k, n in counts["verdicts"].items())
        stages = ", ".join(f"{k}={n}" for k, n in sorted(counts["stages"].items()))
        line = f"{self.model_name}: {head} ({parts}; stages: {stages}; {self.elapsed_ms:.1f} ms)"
        if self.cancelled:
            line += " " + _paint("[cancelled]", "yellow", None, color)
        elif self.short_circuited:
            line += " [short-circuited]"
        return line

    def _label(self, handle: int) -> str:
        return self.signal_names.get(handle, f"x{handle}")

    def _witness_lines(self, t: TaskResult, color: bool) -> List[str]:
        assert t.witness is not None
        lines = [f"    witness pair (differs on {self._label(t.witness.target)}):"]
        shown = sorted(set(t.closure_signals) | {t.witness.target})
        for h in shown:
            a = t.witness.first.get(h)
            b = t.witness.second.get(h)
            if a is None and b is None:
                continue
            a_s = format_element(a, self.prime) if a is not None else "?"
            b_s = format_element(b, self.prime) if b is not None else "?"
            row = f"      {self._label(h):<24} {a_s:>12}  {b_s:>12}"
            if a != b:
                row = _paint(row, "red", None, color)
            lines.append(row)
        return lines

    def to_text(self, color: bool = False, verbose: bool = False) -> str:
        lines = [self.summary_line(color)]
        for t in self.tasks:
            if t.verdict is Verdict.SAFE and not verbose:
                continue
            c, a = _VERDICT_STYLE[t.verdict]
            tag = _paint(f"[{t.verdict.value}]", c, a, color)
            name = _paint(t.name, "cyan", ["bold"], color)
            how = t.rule or t.reason or ""
            lines.append(f"  {tag} {name} ({t.role}, {t.scope}) via {t.stage}"
                         + (f": {how}" if how else ""))
            if t.locations:
                lines.append(f"    at {'; '.join(t.locations)}")
            if t.constraints:
                lines.append(f"    closure: constraints {list(t.constraints)}")
            if t.detail and t.verdict is not Verdict.SAFE:
                lines.append(f"    {t.detail}")
            if t.witness is not None:
                lines.extend(self._witness_lines(t, color))
        return "\n".join(lines)
