"""
circuit_safety/decomposer.py
════════════════════════════

Splits a constraint model into per-signal verification tasks.

    ConstraintModel ──► DependencyGraph ──► SCC clusters ──► topological plan
                                                   │
                                   build_task(target, cluster, proven)
                                                   ▼
                                          VerificationTask

A *cluster* is a strongly connected component of the directed
"computed-from" relation over unknown signals.  Its *closure* is every
constraint touching one of its signals.  Tasks are built lazily because
their parameter set depends on verdicts: signals already proven Safe
(upstream clusters, earlier targets of the same cluster) become shared
parameters and leave the unknown set.

The content signature makes structurally identical tasks (the same
template instantiated twice) collide in the verdict cache::

    target → 0, other unknowns → 1.., parameters → k.. (ascending handles)
    sorted monic constraint strings + target role + prime  ──► SHA-256
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .constraint_model import ConstraintModel, SignalRole
from .dependency_graph import DependencyGraph
from .polynomial import Polynomial

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalCluster:
    """A strongly connected group of unknown signals.

    ``upstream`` holds the positions (in plan order) of the clusters this
    one depends on directly.
    """
    position: int
    signals: Tuple[int, ...]
    constraints: FrozenSet[int]
    upstream: FrozenSet[int] = frozenset()

    @property
    def is_free(self) -> bool:
        return not self.constraints

    def __len__(self) -> int:
        return len(self.signals)


@dataclass(frozen=True)
class VerificationTask:
    """Decide whether ``target`` is determined by ``parameters``.

    ``polynomials`` are the closure constraints with fixed constants
    substituted, aligned with ``constraint_indices``.
    """
    target: int
    target_role: SignalRole
    cluster: int
    prime: int
    constraint_indices: Tuple[int, ...]
    polynomials: Tuple[Polynomial, ...]
    parameters: FrozenSet[int]
    unknowns: FrozenSet[int]
    _canonical: Dict[int, int] = field(default_factory=dict, compare=False, repr=False)
    _signature: List[str] = field(default_factory=list, compare=False, repr=False)

    # ── canonical form ───────────────────────────────────────────────

    @property
    def canonical_labels(self) -> Dict[int, int]:
        """Handle → canonical label (target first, unknowns, parameters)."""
        if not self._canonical:
            order = [self.target]
            order += sorted(u for u in self.unknowns if u != self.target)
            order += sorted(self.parameters)
            self._canonical.update({h: i for i, h in enumerate(order)})
        return dict(self._canonical)

    def canonical_text(self) -> str:
        labels = self.canonical_labels
        rows = sorted({
            p.rename(labels).monic().to_string(lambda v: f"v{v}", signed=False)
            for p in self.polynomials if not p.is_zero
        })
        n_unknown = len(self.unknowns | {self.target})
        head = f"p={self.prime};role={self.target_role.value};u={n_unknown};k={len(self.parameters)}"
        return head + "|" + ";".join(rows)

    @property
    def signature(self) -> str:
        if not self._signature:
            digest = hashlib.sha256(self.canonical_text().encode("utf-8")).hexdigest()
            self._signature.append(digest)
        return self._signature[0]

    def describe(self, model: ConstraintModel) -> str:
        return (
            f"task(target={model.name_of(self.target)}, cluster={self.cluster}, "
            f"constraints={list(self.constraint_indices)}, "
            f"unknowns={len(self.unknowns)}, parameters={len(self.parameters)})"
        )


@dataclass
class DecompositionPlan:
    """Ordered clusters of one model."""
    model: ConstraintModel
    clusters: List[SignalCluster]
    monolithic: bool = False

    @property
    def target_count(self) -> int:
        return sum(len(c) for c in self.clusters)

    def cluster_of(self, signal: int) -> Optional[SignalCluster]:
        for c in self.clusters:
            if signal in c.signals:
                return c
        return None

    def summary(self) -> Dict[str, Any]:
        sizes = [len(c) for c in self.clusters]
        return {
            "clusters": len(self.clusters),
            "targets": self.target_count,
            "free_clusters": sum(1 for c in self.clusters if c.is_free),
            "largest_cluster": max(sizes, default=0),
            "monolithic": self.monolithic,
        }

    def describe(self) -> List[str]:
        model = self.model
        lines = []
        for c in self.clusters:
            names = ", ".join(model.name_of(s) for s in c.signals)
            deps = ",".join(str(u) for u in sorted(c.upstream)) or "-"
            lines.append(
                f"[{c.position}] {{{names}}} constraints={len(c.constraints)} upstream={deps}"
            )
        return lines


class Decomposer:
    """Builds the cluster plan and the tasks for one model."""

    def __init__(
        self,
        model: ConstraintModel,
        graph: Optional[DependencyGraph] = None,
        monolithic: bool = False,
    ) -> None:
        self.model = model
        self.graph = graph or DependencyGraph(model)
        self.monolithic = monolithic
        self._constants = model.constant_assignment()
        self._base_parameters = model.parameter_handles()

    def plan(self) -> DecompositionPlan:
        unknowns = sorted(self.graph.unknown_signals)
        if self.monolithic:
            clusters = []
            if unknowns:
                clusters.append(SignalCluster(
                    position=0,
                    signals=tuple(unknowns),
                    constraints=frozenset(c.index for c in self.model.constraints),
                ))
            plan = DecompositionPlan(self.model, clusters, monolithic=True)
        else:
            ordered, upstream = self.graph.topological_clusters()
            clusters = []
            for pos, comp in enumerate(ordered):
                closure, _ = self.graph.closure(comp)
                clusters.append(SignalCluster(pos, tuple(comp), closure, upstream[pos]))
            plan = DecompositionPlan(self.model, clusters)
        logger.info(
            "decomposed %s: %d clusters over %d targets",
            self.model.name, len(plan.clusters), plan.target_count,
        )
        return plan

    def build_task(
        self,
        target: int,
        cluster: SignalCluster,
        proven: Iterable[int] = (),
    ) -> VerificationTask:
        """Task for *target* with the signals in *proven* as parameters."""
        parameters_base = self._base_parameters | (frozenset(proven) - {target})
        indices: List[int] = []
        polys: List[Polynomial] = []
        for ci in sorted(cluster.constraints):
            poly = self.model.constraint(ci).polynomial.substitute(self._constants)
            indices.append(ci)
            polys.append(poly)
        mentioned = frozenset(v for p in polys for v in p.variables)
        parameters = frozenset(v for v in mentioned if v in parameters_base)
        unknowns = frozenset(v for v in mentioned if v not in parameters_base) | {target}
        return VerificationTask(
            target=target,
            target_role=self.model.signal(target).role,
            cluster=cluster.position,
            prime=self.model.prime,
            constraint_indices=tuple(indices),
            polynomials=tuple(polys),
            parameters=parameters,
            unknowns=unknowns,
        )

    def tasks(self, plan: Optional[DecompositionPlan] = None) -> List[VerificationTask]:
        """Every task of the plan, assuming nothing proven yet."""
        plan = plan or self.plan()
        return [
            self.build_task(t, c) for c in plan.clusters for t in c.signals
        ]
