# tests/test_groebner.py
"""
Tests for the GF(p) Buchberger engine, point extraction and univariate
root finding.  Bases are cross-checked against ``sympy.groebner``.
"""

import random

import pytest
import sympy

from circuit_safety.budget import BudgetSpec, unlimited
from circuit_safety.errors import ResourceExhausted
from circuit_safety.field import BN254_PRIME
from circuit_safety.groebner import GREVLEX, LEX, GroebnerEngine, univariate_roots
from circuit_safety.polynomial import Polynomial

P = 101
X, Y, Z = 1, 2, 3
SYMBOLS = {X: sympy.Symbol("x"), Y: sympy.Symbol("y"), Z: sympy.Symbol("z")}


def var(i, prime=P):
    return Polynomial.variable(i, prime)


def to_sympy(poly):
    expr = sympy.Integer(0)
    for mono, coeff in poly.items():
        term = sympy.Integer(coeff)
        for v, e in mono:
            term *= SYMBOLS[v] ** e
        expr += term
    return expr


def sympy_basis(polys, ring):
    gens = [SYMBOLS[h] for h in ring]
    return sympy.groebner([to_sympy(p) for p in polys], *gens, order="lex", modulus=P)


# ── bases ───────────────────────────────────────────────────────────


IDEALS = [
    [var(X) ** 2 - var(Y), var(Y) ** 2 - var(X)],
    [var(X) * var(Y) - 1, var(Y) ** 2 - var(Z), var(X) + var(Z) - 3],
    [var(X) * (var(X) - 1), var(Y) - 2 * var(X)],
    [var(X) ** 3 - var(Y) * var(Z), var(Y) ** 2 - var(X) * var(Z), var(Z) ** 2 - 1],
]


class TestBasis:

    @pytest.mark.parametrize("generators", IDEALS)
    def test_agrees_with_sympy(self, generators):
        ring = [X, Y, Z]
        engine = GroebnerEngine(P, ring, LEX)
        ours = engine.basis(generators, unlimited())
        theirs = sympy_basis(generators, ring)
        assert len(ours) == len(theirs.exprs)
        for g in ours.polynomials():
            assert theirs.contains(to_sympy(g))
        for expr in theirs.exprs:
            poly = sympy.Poly(expr, *[SYMBOLS[h] for h in ring], modulus=P)
            back = Polynomial.zero(P)
            for exps, coeff in poly.terms():
                term = Polynomial.constant(int(coeff) % P, P)
                for h, e in zip(ring, exps):
                    term = term * var(h) ** e
                back = back + term
            assert engine.normal_form(back, ours).is_zero

    def test_unit_ideal(self):
        generators = [var(X) - 1, var(X) - 2]
        result = GroebnerEngine(P, [X], LEX).basis(generators, unlimited())
        assert result.is_unit
        assert sympy_basis(generators, [X]).exprs == [1]

    def test_unit_ideal_nonlinear(self):
        # x = y and x' = y force x = x', so (x − x')·u = 1 has no solution
        u, x2 = 4, 5
        generators = [
            var(X) - var(Y), var(x2) - var(Y),
            (var(X) - var(x2)) * var(u) - 1,
        ]
        result = GroebnerEngine(P, [u, X, x2, Y], LEX).basis(generators, unlimited())
        assert result.is_unit

    def test_basis_is_monic_and_reduced(self):
        engine = GroebnerEngine(P, [X, Y, Z], LEX)
        result = engine.basis(IDEALS[1], unlimited())
        leads = [engine.lead(g) for g in result.basis]
        for g, lead in zip(result.basis, leads):
            assert g[lead] == 1
        for i, lead in enumerate(leads):
            for j, other in enumerate(leads):
                if i != j:
                    assert not all(a <= b for a, b in zip(other, lead))

    def test_grevlex_same_ideal(self):
        engine = GroebnerEngine(P, [X, Y, Z], GREVLEX)
        result = engine.basis(IDEALS[0], unlimited())
        for g in IDEALS[0]:
            assert engine.normal_form(g, result).is_zero

    def test_duplicate_variable_rejected(self):
        with pytest.raises(ValueError):
            GroebnerEngine(P, [X, X])


# ── budgets ─────────────────────────────────────────────────────────


class TestBudget:

    def test_zero_time(self):
        budget = BudgetSpec(time_seconds=0).start()
        with pytest.raises(ResourceExhausted) as info:
            GroebnerEngine(P, [X], LEX).basis([var(X) - 1], budget)
        assert info.value.kind == "time"

    def test_degree_limit(self):
        budget = BudgetSpec(max_degree=2).start()
        with pytest.raises(ResourceExhausted) as info:
            GroebnerEngine(P, [X, Y], LEX).basis([var(X) ** 3 - var(Y)], budget)
        assert info.value.kind == "degree"


# ── points ──────────────────────────────────────────────────────────


class TestFindPoint:

    @pytest.mark.parametrize("generators", [IDEALS[0], IDEALS[2], IDEALS[3]])
    def test_point_satisfies_generators(self, generators):
        engine = GroebnerEngine(P, [X, Y, Z], LEX)
        result = engine.basis(generators, unlimited())
        point = engine.find_point(result, unlimited(), random.Random(1))
        assert point is not None
        for g in generators:
            assert g.evaluate(point) == 0

    def test_no_point_for_unit(self):
        engine = GroebnerEngine(P, [X], LEX)
        result = engine.basis([var(X) - 1, var(X) - 2], unlimited())
        assert engine.find_point(result, unlimited()) is None

    def test_no_rational_point(self):
        # 101 ≡ 1 (mod 4) has a square root of −1, 103 does not
        engine = GroebnerEngine(103, [X], LEX)
        result = engine.basis([var(X, 103) ** 2 + 1], unlimited())
        assert not result.is_unit
        assert engine.find_point(result, unlimited()) is None

    def test_preferred_values(self):
        engine = GroebnerEngine(P, [X, Y], LEX)
        result = engine.basis([var(X) - var(Y)], unlimited())
        point = engine.find_point(result, unlimited(), preferred={Y: 42})
        assert point == {X: 42, Y: 42}

    def test_needs_lex(self):
        engine = GroebnerEngine(P, [X, Y], GREVLEX)
        result = engine.basis([var(X) - var(Y)], unlimited())
        with pytest.raises(ValueError):
            engine.find_point(result, unlimited())

    def test_search_limit(self):
        engine = GroebnerEngine(P, [X, Y, Z], LEX)
        result = engine.basis([var(X) * var(Y) * var(Z) - 1], unlimited())
        with pytest.raises(ResourceExhausted) as info:
            engine.find_point(result, BudgetSpec(max_search_nodes=1).start())
        assert info.value.kind == "search"


# ── univariate roots ────────────────────────────────────────────────


class TestUnivariateRoots:

    def test_small_field(self):
        assert univariate_roots([1, 0, P - 4], P) == [2, P - 2]

    def test_linear(self):
        assert univariate_roots([3, 6], P) == [P - 2]

    def test_constant_has_no_roots(self):
        assert univariate_roots([5], P) == []

    def test_large_field(self):
        # (x − 3)(x − 5)(x − 7) = x³ − 15x² + 71x − 105
        coeffs = [1, -15, 71, -105]
        assert univariate_roots(coeffs, BN254_PRIME) == [3, 5, 7]

    def test_large_field_repeated_root(self):
        # (x − 4)² = x² − 8x + 16
        assert univariate_roots([1, -8, 16], BN254_PRIME) == [4]
