"""
circuit_safety/dependency_graph.py
══════════════════════════════════

Signal ↔ constraint dependency graph.

    signal s ──────── constraint c      (bipartite, undirected)
         │
         └── s → a    (directed, over unknown signals only)

Both relations are stored as integer-indexed adjacency lists built once
from a :class:`ConstraintModel`; nodes hold no references to each other.

The directed relation drives decomposition.  For a constraint that
assigns signal ``a`` (Circom ``<==``), every other unknown ``s`` in it
gives an edge ``s → a``: ``a`` is computed from ``s``.  A plain equality
relates its unknowns in both directions.  Strongly connected components
of this relation are the *clusters*; :meth:`topological_clusters` orders
them so every cluster comes after the clusters it depends on.
"""

from __future__ import annotations

import heapq
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .constraint_model import ConstraintModel
from .errors import StructuralError

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Adjacency lists over a read-only model."""

    def __init__(self, model: ConstraintModel) -> None:
        self.model = model
        n = model.signal_count
        self._unknown: FrozenSet[int] = frozenset(s.index for s in model.targets)
        self._constraints_of: List[List[int]] = [[] for _ in range(n)]
        self._signals_of: List[Tuple[int, ...]] = []
        self._successors: List[Set[int]] = [set() for _ in range(n)]

        for con in model.constraints:
            vars_ = tuple(sorted(con.variables))
            self._signals_of.append(vars_)
            for v in vars_:
                self._constraints_of[v].append(con.index)
            unknowns = [v for v in vars_ if v in self._unknown]
            assigned = con.assigned_signal
            if assigned is not None and assigned in self._unknown:
                for s in unknowns:
                    if s != assigned:
                        self._successors[s].add(assigned)
            else:
                for s in unknowns:
                    for t in unknowns:
                        if s != t:
                            self._successors[s].add(t)

    # ── adjacency ────────────────────────────────────────────────────

    @property
    def unknown_signals(self) -> FrozenSet[int]:
        return self._unknown

    def constraints_of(self, signal: int) -> Tuple[int, ...]:
        return tuple(self._constraints_of[signal])

    def signals_of(self, constraint: int) -> Tuple[int, ...]:
        return self._signals_of[constraint]

    def successors(self, signal: int) -> FrozenSet[int]:
        return frozenset(self._successors[signal])

    def predecessors(self, signal: int) -> FrozenSet[int]:
        return frozenset(
            s for s in self._unknown if signal in self._successors[s]
        )

    def closure(self, signals: Iterable[int]) -> Tuple[FrozenSet[int], FrozenSet[int]]:
        """Constraints touching *signals*, and every signal they mention."""
        cons: Set[int] = set()
        for s in signals:
            cons.update(self._constraints_of[s])
        related: Set[int] = set()
        for c in cons:
            related.update(self._signals_of[c])
        return frozenset(cons), frozenset(related)

    def check_consistency(self) -> None:
        """Edge sets must mirror each constraint's variable set exactly."""
        n = self.model.signal_count
        for con in self.model.constraints:
            if set(self._signals_of[con.index]) != set(con.variables):
                raise StructuralError(
                    "dependency graph out of sync with constraint", constraint=con.index,
                )
        for s in range(n):
            for c in self._constraints_of[s]:
                if s not in self._signals_of[c]:
                    raise StructuralError(
                        "dangling signal edge", signal=s, constraint=c,
                    )

    # ── components ───────────────────────────────────────────────────

    def strongly_connected_components(self) -> List[List[int]]:
        """Tarjan's algorithm, iterative, over the unknown signals.

        Components come out in reverse topological order; each is sorted.
        """
        index: Dict[int, int] = {}
        lowlink: Dict[int, int] = {}
        on_stack: Set[int] = set()
        stack: List[int] = []
        result: List[List[int]] = []
        counter = 0

        for root in sorted(self._unknown):
            if root in index:
                continue
            index[root] = lowlink[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            work = [(root, iter(sorted(self._successors[root])))]
            while work:
                v, children = work[-1]
                descended = False
                for w in children:
                    if w not in index:
                        index[w] = lowlink[w] = counter
                        counter += 1
                        stack.append(w)
                        on_stack.add(w)
                        work.append((w, iter(sorted(self._successors[w]))))
                        descended = True
                        break
                    if w in on_stack:
                        lowlink[v] = min(lowlink[v], index[w])
                if descended:
                    continue
                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[v])
                if lowlink[v] == index[v]:
                    component: List[int] = []
                    while True:
                        w = stack.pop()
                        on_stack.discard(w)
                        component.append(w)
                        if w == v:
                            break
                    result.append(sorted(component))
        return result

    def topological_clusters(
        self, components: Optional[List[List[int]]] = None
    ) -> Tuple[List[List[int]], List[FrozenSet[int]]]:
        """Kahn's algorithm on the condensation.

        Returns ``(clusters, upstream)`` where ``upstream[i]`` holds the
        positions of the clusters cluster ``i`` depends on directly.  Ties
        are broken by the smallest signal handle.
        """
        comps = components if components is not None else self.strongly_connected_components()
        comp_of: Dict[int, int] = {}
        for ci, comp in enumerate(comps):
            for s in comp:
                comp_of[s] = ci

        downstream: List[Set[int]] = [set() for _ in comps]
        upstream: List[Set[int]] = [set() for _ in comps]
        for s in self._unknown:
            for t in self._successors[s]:
                a, b = comp_of[s], comp_of[t]
                if a != b:
                    downstream[a].add(b)
                    upstream[b].add(a)

        indegree = [len(u) for u in upstream]
        heap = [(comps[ci][0], ci) for ci in range(len(comps)) if indegree[ci] == 0]
        heapq.heapify(heap)
        order: List[int] = []
        while heap:
            _, ci = heapq.heappop(heap)
            order.append(ci)
            for nxt in downstream[ci]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(heap, (comps[nxt][0], nxt))
        if len(order) != len(comps):
            raise StructuralError("cycle in cluster condensation")

        position = {ci: pos for pos, ci in enumerate(order)}
        clusters = [comps[ci] for ci in order]
        deps = [frozenset(position[u] for u in upstream[ci]) for ci in order]
        return clusters, deps

    # ── statistics / serialisation ───────────────────────────────────

    def statistics(self) -> Dict[str, Any]:
        comps = self.strongly_connected_components()
        edges = sum(len(s) for s in self._successors)
        return {
            "signals": self.model.signal_count,
            "unknown_signals": len(self._unknown),
            "constraints": self.model.constraint_count,
            "incidences": sum(len(v) for v in self._signals_of),
            "directed_edges": edges,
            "clusters": len(comps),
            "largest_cluster": max((len(c) for c in comps), default=0),
            "isolated_unknowns": sum(
                1 for s in self._unknown if not self._constraints_of[s]
            ),
        }

    def to_dot(self, title: Optional[str] = None) -> str:
        """Graphviz DOT of the bipartite graph, clusters boxed."""
        model = self.model
        lines = ["graph Dependencies {"]
        lines.append("  rankdir=LR;")
        if title:
            lines.append(f'  label="{_escape(title)}";')
        lines.append('  node [fontname="Helvetica", fontsize=10];')

        role_attrs = {
            "input": 'shape=ellipse, style=filled, fillcolor="#ccffcc"',
            "output": 'shape=ellipse, style=filled, fillcolor="#ddeeff"',
            "intermediate": "shape=ellipse",
            "constant": 'shape=ellipse, style=dashed',
        }
        comps = self.strongly_connected_components()
        for ci, comp in enumerate(comps):
            if len(comp) < 2:
                continue
            lines.append(f"  subgraph cluster_{ci} {{")
            lines.append('    style=rounded; color="#999999";')
            for s in comp:
                lines.append(f"    s{s};")
            lines.append("  }")
        for sig in model.signals:
            attrs = role_attrs[sig.role.value]
            lines.append(f'  s{sig.index} [label="{_escape(sig.name)}", {attrs}];')
        for con in model.constraints:
            label = f"c{con.index}"
            shape = "box, style=filled, fillcolor=\"#fff3cd\"" if con.assigned_signal is not None \
                else "box"
            lines.append(f'  c{con.index} [label="{label}", shape={shape}];')
            for s in self._signals_of[con.index]:
                style = " [style=bold]" if s == con.assigned_signal else ""
                lines.append(f"  s{s} -- c{con.index}{style};")
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"DependencyGraph(signals={self.model.signal_count}, "
            f"constraints={self.model.constraint_count})"
        )


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
