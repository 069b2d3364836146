"""
circuit_safety/algebraic_verifier.py
════════════════════════════════════

Exact decision of unique determination for one task.

For a task with target ``t``, unknowns ``a, b, ...`` and parameters
``x, y, ...`` the verifier builds, over GF(p)::

    I = ⟨ P_j(t,  a,  b,  ..., x, ...)          closure constraints
          P_j(t', a', b', ..., x, ...)          same, unknowns renamed
          (t − t')·u − 1 ⟩                      t ≠ t'

Parameters are shared between the two copies, everything else is
duplicated.  ``V(I)`` is empty exactly when every two solutions that
agree on the parameters agree on ``t``; by the weak Nullstellensatz
over the algebraic closure this is ``1 ∈ I``, i.e. reduced basis {1}.

Ring variables are ordered (lex, largest first)::

    u > a > a' > b > b' > ... > t > t' > x > y > ...

so the parameters and the target pair are solved first when a rational
point is extracted.  A point found this way is checked against the
closure before it is reported as a witness pair.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Dict, List

from .budget import Budget
from .decomposer import VerificationTask
from .errors import ResourceExhausted, SolverFault
from .groebner import LEX, GroebnerEngine
from .polynomial import Polynomial
from .verdict import (
    ProofCertificate,
    ResolutionStage,
    TaskVerdict,
    UnknownReason,
    WitnessPair,
)

logger = logging.getLogger(__name__)


class AlgebraicVerifier:
    """Gröbner-basis decision procedure for single tasks.

    Stateless apart from the seed, so one instance serves every worker.
    """

    def __init__(self, seed: int = 0) -> None:
        self.seed = seed

    def ring_layout(self, task: VerificationTask):
        """Return ``(variables, copies, u)`` for *task*.

        ``copies`` maps each unknown (target included) to its fresh
        duplicate handle.
        """
        handles = set(task.unknowns) | set(task.parameters) | {task.target}
        fresh = max(handles) + 1 if handles else 0
        others = sorted(task.unknowns - {task.target})
        copies: Dict[int, int] = {}
        for h in others + [task.target]:
            copies[h] = fresh
            fresh += 1
        u = fresh
        variables: List[int] = [u]
        for h in others:
            variables += [h, copies[h]]
        variables += [task.target, copies[task.target]]
        variables += sorted(task.parameters)
        return variables, copies, u

    def verify(self, task: VerificationTask, budget: Budget) -> TaskVerdict:
        started = time.perf_counter()
        p = task.prime
        variables, copies, u = self.ring_layout(task)
        budget.check_variables(len(variables))

        closure = [poly for poly in task.polynomials if not poly.is_zero]
        t = Polynomial.variable(task.target, p)
        t_copy = Polynomial.variable(copies[task.target], p)
        generators = list(closure)
        generators += [poly.rename(copies) for poly in closure]
        generators.append((t - t_copy) * Polynomial.variable(u, p) - 1)

        engine = GroebnerEngine(p, variables, LEX)
        result = engine.basis(generators, budget)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        if result.is_unit:
            certificate = ProofCertificate(
                method="buchberger",
                term_order=LEX.name,
                variables=len(variables),
                generators=len(generators),
                steps=result.steps,
                basis_size=1,
                elapsed_ms=elapsed_ms,
            )
            return TaskVerdict.safe(
                ResolutionStage.ALGEBRAIC,
                certificate=certificate,
                detail="duplicated ideal is the unit ideal",
            )

        rng = random.Random(f"{self.seed}:{task.signature}")
        try:
            point = engine.find_point(result, budget, rng)
        except ResourceExhausted as exc:
            if exc.kind != "search":
                raise
            logger.debug("witness search gave up for target %d: %s", task.target, exc)
            point = None
        if point is None:
            return TaskVerdict.unknown(
                ResolutionStage.ALGEBRAIC,
                UnknownReason.NO_RATIONAL_WITNESS,
                detail=f"non-unit basis of {len(result)} elements without a GF(p) point",
            )

        first = {h: point[h] for h in task.unknowns | task.parameters}
        second = {h: point[copies.get(h, h)] for h in task.unknowns | task.parameters}
        witness = WitnessPair(task.target, first, second)
        for values in (first, second):
            bad = [i for i, poly in zip(task.constraint_indices, task.polynomials)
                   if poly.evaluate(values) != 0]
            if bad:
                raise SolverFault(
                    "extracted point violates closure constraints",
                    constraints=bad,
                )
        if not witness.differs_on_target:
            raise SolverFault("extracted witnesses agree on the target")
        return TaskVerdict.unsafe(
            ResolutionStage.ALGEBRAIC,
            witness,
            detail=f"rational point on a basis of {len(result)} elements",
        )
