# tests/test_dependency_graph.py
"""
Tests for the signal dependency graph: edges, SCCs, topological clusters.
"""

import pytest

from circuit_safety.constraint_model import ModelBuilder
from circuit_safety.dependency_graph import DependencyGraph
from tests.conftest import (
    P,
    chain_circuit,
    is_zero_circuit,
    num2bits_circuit,
    unconstrained_output_circuit,
)


def handles(model, *names):
    return [model.signal_by_name(n).index for n in names]


# ── edges ───────────────────────────────────────────────────────────


class TestEdges:

    def test_assignment_edges_point_at_assigned(self):
        model = is_zero_circuit()
        graph = DependencyGraph(model)
        out, inv = handles(model, "out", "inv")
        assert graph.successors(inv) == frozenset({out})
        assert graph.successors(out) == frozenset()
        assert graph.predecessors(out) == frozenset({inv})

    def test_plain_constraints_are_bidirectional(self):
        model = num2bits_circuit(3)
        graph = DependencyGraph(model)
        b0, b1, b2 = handles(model, "out[0]", "out[1]", "out[2]")
        assert graph.successors(b0) == frozenset({b1, b2})
        assert b0 in graph.successors(b2)

    def test_inputs_are_not_unknown(self):
        model = is_zero_circuit()
        graph = DependencyGraph(model)
        (i,) = handles(model, "in")
        assert i not in graph.unknown_signals
        assert graph.successors(i) == frozenset()

    def test_incidence(self):
        model = is_zero_circuit()
        graph = DependencyGraph(model)
        i, out, inv = handles(model, "in", "out", "inv")
        assert graph.constraints_of(out) == (0, 1)
        assert set(graph.signals_of(0)) == {i, out, inv}
        cons, sigs = graph.closure([inv])
        assert cons == frozenset({0})
        assert sigs == frozenset({i, out, inv})

    def test_consistency_check_passes(self):
        DependencyGraph(num2bits_circuit(4)).check_consistency()


# ── components ──────────────────────────────────────────────────────


class TestComponents:

    def test_chain_is_singletons(self):
        model = chain_circuit()
        comps = DependencyGraph(model).strongly_connected_components()
        assert sorted(map(len, comps)) == [1, 1, 1]

    def test_bits_form_one_component(self):
        model = num2bits_circuit(3)
        comps = DependencyGraph(model).strongly_connected_components()
        assert comps == [sorted(handles(model, "out[0]", "out[1]", "out[2]"))]

    def test_mutual_assignments_form_cycle(self):
        b = ModelBuilder(P)
        x = b.input("x")
        u = b.intermediate("u")
        v = b.intermediate("v")
        b.add(b.var(u) - b.var(v) - b.var(x), assigned=u)
        b.add(b.var(v) - b.var(u) * b.var(x), assigned=v)
        comps = DependencyGraph(b.build()).strongly_connected_components()
        assert comps == [[u, v]]

    def test_long_chain_does_not_recurse(self):
        b = ModelBuilder(P)
        prev = b.input("x")
        for k in range(3000):
            cur = b.intermediate(f"s{k}")
            b.add(b.var(cur) - b.var(prev), assigned=cur)
            prev = cur
        comps = DependencyGraph(b.build()).strongly_connected_components()
        assert len(comps) == 3000


# ── topological order ───────────────────────────────────────────────


class TestTopologicalClusters:

    def test_upstream_first(self):
        model = chain_circuit()
        clusters, upstream = DependencyGraph(model).topological_clusters()
        a, c, out = handles(model, "a", "c", "out")
        assert clusters == [[a], [c], [out]]
        assert upstream == [frozenset(), frozenset({0}), frozenset({1})]

    def test_is_zero_order(self):
        model = is_zero_circuit()
        clusters, _ = DependencyGraph(model).topological_clusters()
        out, inv = handles(model, "out", "inv")
        assert clusters == [[inv], [out]]

    def test_ties_broken_by_smallest_signal(self):
        b = ModelBuilder(P)
        x = b.input("x")
        y2 = b.output("y2")
        y1 = b.output("y1")
        b.add(b.var(y1) - b.var(x), assigned=y1)
        b.add(b.var(y2) - b.var(x), assigned=y2)
        clusters, _ = DependencyGraph(b.build()).topological_clusters()
        assert clusters == [[y2], [y1]]

    def test_deterministic(self):
        model = num2bits_circuit(5)
        first = DependencyGraph(model).topological_clusters()
        second = DependencyGraph(model).topological_clusters()
        assert first == second


# ── statistics / DOT ────────────────────────────────────────────────


class TestSerialisation:

    def test_statistics(self):
        stats = DependencyGraph(unconstrained_output_circuit()).statistics()
        assert stats["unknown_signals"] == 1
        assert stats["isolated_unknowns"] == 1
        assert stats["clusters"] == 1

    def test_dot(self):
        model = is_zero_circuit()
        dot = DependencyGraph(model).to_dot(title="IsZero")
        assert dot.startswith("graph Dependencies {")
        assert 'label="IsZero"' in dot
        assert "s1 -- c0 [style=bold];" in dot
        assert dot.rstrip().endswith("}")

    @pytest.mark.parametrize("bits", [1, 2, 6])
    def test_dot_has_cluster_for_sccs(self, bits):
        dot = DependencyGraph(num2bits_circuit(bits)).to_dot()
        assert ("subgraph cluster_" in dot) == (bits > 1)
