# tests/test_decomposer.py
"""
Tests for cluster planning, task construction and task signatures.
"""

from circuit_safety.constraint_model import ModelBuilder, SignalRole
from circuit_safety.decomposer import Decomposer
from tests.conftest import (
    P,
    chain_circuit,
    identity_circuit,
    is_zero_circuit,
    task_for,
    twin_identity_circuit,
    unconstrained_output_circuit,
)


# ── plans ───────────────────────────────────────────────────────────


class TestPlan:

    def test_every_target_in_exactly_one_cluster(self):
        model = is_zero_circuit()
        plan = Decomposer(model).plan()
        seen = [s for c in plan.clusters for s in c.signals]
        assert sorted(seen) == sorted(s.index for s in model.targets)

    def test_cluster_closure(self):
        model = is_zero_circuit()
        plan = Decomposer(model).plan()
        out = model.signal_by_name("out").index
        assert plan.cluster_of(out).constraints == frozenset({0, 1})

    def test_free_cluster(self):
        plan = Decomposer(unconstrained_output_circuit()).plan()
        assert len(plan.clusters) == 1
        assert plan.clusters[0].is_free
        assert plan.summary()["free_clusters"] == 1

    def test_monolithic_plan(self):
        model = chain_circuit()
        plan = Decomposer(model, monolithic=True).plan()
        assert len(plan.clusters) == 1
        assert plan.clusters[0].constraints == frozenset({0, 1, 2})
        assert plan.summary()["monolithic"] is True

    def test_describe(self):
        lines = Decomposer(chain_circuit()).plan().describe()
        assert lines[0].startswith("[0] {a}")
        assert "upstream=0" in lines[1]

    def test_empty_model(self):
        b = ModelBuilder(P)
        b.input("x")
        plan = Decomposer(b.build()).plan()
        assert plan.clusters == []
        assert plan.target_count == 0


# ── tasks ───────────────────────────────────────────────────────────


class TestTasks:

    def test_parameters_and_unknowns(self):
        model = is_zero_circuit()
        task = task_for(model, "inv")
        i, out, inv = (model.signal_by_name(n).index for n in ("in", "out", "inv"))
        assert task.parameters == frozenset({i})
        assert task.unknowns == frozenset({out, inv})
        assert task.target_role is SignalRole.INTERMEDIATE

    def test_proven_signals_become_parameters(self):
        model = chain_circuit()
        a = model.signal_by_name("a").index
        task = task_for(model, "c", proven={a})
        assert a in task.parameters
        assert a not in task.unknowns

    def test_target_never_a_parameter(self):
        model = identity_circuit()
        y = model.signal_by_name("y").index
        task = task_for(model, "y", proven={y})
        assert y in task.unknowns
        assert y not in task.parameters

    def test_fixed_constants_substituted(self):
        b = ModelBuilder(P)
        one = b.constant("one", 1)
        x = b.input("x")
        y = b.output("y")
        b.add(b.var(y) - b.var(x) - b.var(one))
        task = task_for(b.build(), "y")
        assert one not in task.parameters
        assert task.polynomials[0] == b.var(y) - b.var(x) - 1

    def test_tasks_cover_plan(self):
        model = chain_circuit()
        decomposer = Decomposer(model)
        tasks = decomposer.tasks()
        assert [t.target for t in tasks] == [
            model.signal_by_name(n).index for n in ("a", "c", "out")
        ]


# ── signatures ──────────────────────────────────────────────────────


class TestSignature:

    def test_identical_structure_same_signature(self):
        model = twin_identity_circuit()
        t1 = task_for(model, "y1")
        t2 = task_for(model, "y2")
        assert t1.signature == t2.signature
        assert t1.canonical_labels != t2.canonical_labels

    def test_independent_of_names_and_handles(self):
        a = identity_circuit()
        b = ModelBuilder(P, name="renamed")
        junk = b.input("unused")
        out = b.output("result")
        src = b.input("source")
        b.add(b.var(src) - b.var(out))
        other = b.build()
        assert junk != src
        assert task_for(a, "y").signature == task_for(other, "result").signature

    def test_scale_invariant(self):
        b = ModelBuilder(P)
        x = b.input("x")
        y = b.output("y")
        b.add(3 * (b.var(y) - b.var(x)))
        assert task_for(b.build(), "y").signature == task_for(identity_circuit(), "y").signature

    def test_different_structure_differs(self):
        assert task_for(identity_circuit(), "y").signature != \
            task_for(is_zero_circuit(), "out").signature

    def test_prime_is_part_of_signature(self):
        assert task_for(identity_circuit(101), "y").signature != \
            task_for(identity_circuit(103), "y").signature

    def test_canonical_labels_order(self):
        model = is_zero_circuit()
        task = task_for(model, "out")
        labels = task.canonical_labels
        assert labels[task.target] == 0
        assert sorted(labels.values()) == list(range(len(labels)))
