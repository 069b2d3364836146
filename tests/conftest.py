# tests/conftest.py
"""
Shared fixtures and small reference circuits.

Every circuit here lives over GF(101) unless stated otherwise, which keeps
the Gröbner computations tiny and lets univariate root finding use the
brute-force path.
"""

import json

import pytest

from circuit_safety.budget import unlimited
from circuit_safety.config import VerifierConfig
from circuit_safety.constraint_model import ConstraintModel, ModelBuilder
from circuit_safety.decomposer import Decomposer, VerificationTask
from circuit_safety.field import BN254_PRIME

P = 101


# ── circuit builders ────────────────────────────────────────────────


def identity_circuit(prime: int = P) -> ConstraintModel:
    """``y === x``: y determined by x."""
    b = ModelBuilder(prime, name="identity")
    x = b.input("x")
    y = b.output("y")
    b.add(b.var(y) - b.var(x))
    return b.build()


def unconstrained_output_circuit(prime: int = P) -> ConstraintModel:
    """``y`` never appears in a constraint."""
    b = ModelBuilder(prime, name="unconstrained")
    x = b.input("x")
    b.output("y")
    b.add(b.var(x) * (b.var(x) - 1))
    return b.build()


def boolean_output_circuit(prime: int = P) -> ConstraintModel:
    """``b·(b − 1) === 0``: b may be 0 or 1."""
    b = ModelBuilder(prime, name="boolean")
    out = b.output("b")
    b.add(b.var(out) * (b.var(out) - 1))
    return b.build()


def is_zero_circuit(prime: int = P) -> ConstraintModel:
    """The classic IsZero gadget; ``inv`` is unconstrained when ``in`` is 0."""
    b = ModelBuilder(prime, name="IsZero")
    i = b.input("in")
    out = b.output("out")
    inv = b.intermediate("inv")
    b.add(b.var(out) + b.var(i) * b.var(inv) - 1, assigned=out,
          template="IsZero", component="main")
    b.add(b.var(i) * b.var(out), template="IsZero", component="main")
    return b.build()


def num2bits_circuit(bits: int = 3, prime: int = P) -> ConstraintModel:
    b = ModelBuilder(prime, name=f"Num2Bits({bits})")
    i = b.input("in")
    outs = [b.output(f"out[{k}]") for k in range(bits)]
    for o in outs:
        b.add(b.var(o) * (b.var(o) - 1), template="Num2Bits")
    acc = b.const(0)
    for k, o in enumerate(outs):
        acc = acc + b.var(o) * (1 << k)
    b.add(acc - b.var(i), template="Num2Bits")
    return b.build()


def chain_circuit(prime: int = P) -> ConstraintModel:
    """``a <== x²; c <== a + 1; out <== c·c``."""
    b = ModelBuilder(prime, name="chain")
    x = b.input("x")
    a = b.intermediate("a")
    c = b.intermediate("c")
    out = b.output("out")
    b.add(b.var(a) - b.var(x) * b.var(x), assigned=a)
    b.add(b.var(c) - b.var(a) - 1, assigned=c)
    b.add(b.var(out) - b.var(c) * b.var(c), assigned=out)
    return b.build()


def free_output_chain_circuit(length: int, prime: int = P) -> ConstraintModel:
    """``x·(x−1) = 0``, ``a[k] <== a[k−1] + 1`` from ``a[0] <== x``, free ``y``."""
    b = ModelBuilder(prime, name=f"FreeChain({length})")
    x = b.input("x")
    b.output("y")
    b.add(b.var(x) * (b.var(x) - 1))
    prev = x
    for k in range(length):
        a = b.intermediate(f"a[{k}]")
        step = 0 if k == 0 else 1
        b.add(b.var(a) - b.var(prev) - step, assigned=a)
        prev = a
    return b.build()


def linear_system_circuit(prime: int = P) -> ConstraintModel:
    """``s = y + z, d = y − z``: y and z solvable only jointly."""
    b = ModelBuilder(prime, name="linear")
    s = b.input("s")
    d = b.input("d")
    y = b.output("y")
    z = b.output("z")
    b.add(b.var(y) + b.var(z) - b.var(s))
    b.add(b.var(y) - b.var(z) - b.var(d))
    return b.build()


def twin_identity_circuit(prime: int = P) -> ConstraintModel:
    """Two structurally identical, independent copies of ``y === x``."""
    b = ModelBuilder(prime, name="twins")
    x1 = b.input("x1")
    x2 = b.input("x2")
    y1 = b.output("y1")
    y2 = b.output("y2")
    b.add(b.var(y1) - b.var(x1), assigned=y1)
    b.add(b.var(y2) - b.var(x2), assigned=y2)
    return b.build()


def task_for(model: ConstraintModel, name: str, proven=()) -> VerificationTask:
    """The first-pass task of signal *name* in its cluster."""
    decomposer = Decomposer(model)
    plan = decomposer.plan()
    handle = model.signal_by_name(name).index
    cluster = plan.cluster_of(handle)
    return decomposer.build_task(handle, cluster, proven)


# ── fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def prime():
    return P


@pytest.fixture
def budget():
    return unlimited()


@pytest.fixture
def serial_config():
    return VerifierConfig(max_workers=1, time_budget_seconds=30.0)


@pytest.fixture
def bn254():
    return BN254_PRIME


@pytest.fixture
def is_zero_json(tmp_path):
    data = {
        "name": "IsZero",
        "prime": str(P),
        "signals": [
            {"name": "in", "role": "input"},
            {"name": "out", "role": "output"},
            {"name": "inv", "role": "intermediate"},
        ],
        "constraints": [
            {"expr": "out <== 1 - in * inv", "template": "IsZero"},
            {"expr": "in * out === 0", "template": "IsZero"},
        ],
    }
    path = tmp_path / "iszero.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def identity_json(tmp_path):
    data = {
        "name": "identity",
        "prime": str(P),
        "signals": [
            {"name": "x", "role": "input"},
            {"name": "y", "role": "output"},
        ],
        "constraints": ["y <== x"],
    }
    path = tmp_path / "identity.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def circom_dir(tmp_path):
    """Artifacts of ``IsZero`` as emitted by the instrumented compiler.

    Signal layout: 0 = one, 1 = out, 2 = in, 3 = inv.
    R1CS rows: (−in)·(inv) − (out − 1) and (in)·(out) − 0.
    """
    d = tmp_path / "iszero_artifacts"
    d.mkdir()
    neg1 = str(P - 1)
    constraints = {
        "constraints": [
            [{"2": neg1}, {"3": "1"}, {"1": "1", "0": neg1}],
            [{"2": "1"}, {"1": "1"}, {}],
        ]
    }
    (d / "constraints.json").write_text(json.dumps(constraints), encoding="utf-8")
    (d / "iszero.sym").write_text(
        "1,1,0,main.out\n2,2,0,main.in\n3,3,0,main.inv\n", encoding="utf-8",
    )
    tree = {
        "field": str(P),
        "no_constraints": 2,
        "initial_constraint": 0,
        "node_id": 0,
        "template_name": "IsZero",
        "component_name": "main",
        "number_inputs": 1,
        "number_outputs": 1,
        "number_signals": 3,
        "initial_signal": 1,
        "are_double_arrow": [[0, 1]],
        "subcomponents": [],
    }
    (d / "tree_constraints.json").write_text(json.dumps(tree), encoding="utf-8")
    return d
