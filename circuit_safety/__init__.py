"""
circuit_safety — Modular Safety Verification for Arithmetic Circuits
=====================================================================

Decides whether every output and intermediate signal of a polynomial
constraint system over a prime field is uniquely determined by the
inputs.  The circuit is split into strongly connected clusters of its
signal dependency graph; each signal is checked by cheap structural
rules first and by a Gröbner-basis decision procedure when those are
inconclusive.

Core modules
------------
field / polynomial
    GF(p) arithmetic and sparse multivariate polynomials.
constraint_model
    Signals, constraints, provenance and model validation.
expression_parser / loader
    Textual constraints (parsimonious grammar), JSON models, Circom
    artifact directories.
dependency_graph / decomposer
    Tarjan SCCs, topological clusters, per-target verification tasks.
heuristics / groebner / algebraic_verifier
    Rule-based checks, Buchberger over GF(p), the duplicated-ideal test.
witness
    Extension of task witness pairs to whole-circuit witnesses.
orchestrator / report
    Parallel scheduling, single-flight verdict cache, reports.
main
    CLI: ``verify``, ``graph``, ``plan``, ``check``.

Quick start
-----------
>>> from circuit_safety import ModelBuilder, ModularVerifier
>>> b = ModelBuilder(prime=101)
>>> x = b.input("x"); y = b.output("y")
>>> _ = b.add(b.var(y) - b.var(x), assigned=y)
>>> ModularVerifier().verify(b.build()).verdict
<Verdict.SAFE: 'safe'>
"""

from __future__ import annotations

__version__: str = "0.1.0"

from .config import VerifierConfig
from .constraint_model import (
    Constraint,
    ConstraintModel,
    ModelBuilder,
    Provenance,
    Signal,
    SignalRole,
)
from .errors import (
    CircuitSafetyError,
    ConfigurationError,
    ModelParseError,
    ResourceExhausted,
    SolverFault,
    StructuralError,
    VerificationCancelled,
)
from .loader import load_circom_artifacts, load_json_model, load_model, load_witness
from .orchestrator import ModularVerifier, VerdictCache
from .polynomial import Polynomial
from .report import TaskResult, VerificationReport
from .verdict import TaskVerdict, UnknownReason, Verdict, WitnessPair

__all__: list[str] = [
    "__version__",
    "CircuitSafetyError",
    "ConfigurationError",
    "Constraint",
    "ConstraintModel",
    "ModelBuilder",
    "ModelParseError",
    "ModularVerifier",
    "Polynomial",
    "Provenance",
    "ResourceExhausted",
    "Signal",
    "SignalRole",
    "SolverFault",
    "StructuralError",
    "TaskResult",
    "TaskVerdict",
    "UnknownReason",
    "VerdictCache",
    "VerificationCancelled",
    "VerificationReport",
    "Verdict",
    "VerifierConfig",
    "WitnessPair",
    "load_circom_artifacts",
    "load_json_model",
    "load_model",
    "load_witness",
]
