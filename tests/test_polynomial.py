# tests/test_polynomial.py
"""
Tests for GF(p) helpers and sparse polynomial arithmetic.
"""

import pytest

from circuit_safety.field import (
    BN254_PRIME,
    format_element,
    inverse,
    is_probable_prime,
    parse_prime,
    power_of_two_exponent,
    to_signed,
)
from circuit_safety.polynomial import Polynomial

P = 101


def var(i):
    return Polynomial.variable(i, P)


# ── field ───────────────────────────────────────────────────────────


class TestField:

    def test_inverse(self):
        for a in (1, 2, 50, 100):
            assert a * inverse(a, P) % P == 1

    def test_inverse_of_zero(self):
        with pytest.raises(ZeroDivisionError):
            inverse(0, P)

    def test_signed_display(self):
        assert to_signed(100, P) == -1
        assert to_signed(50, P) == 50
        assert format_element(P - 3, P) == "-3"

    def test_primality(self):
        assert is_probable_prime(101)
        assert is_probable_prime(BN254_PRIME)
        assert not is_probable_prime(100)
        assert not is_probable_prime(1)

    def test_power_of_two(self):
        assert power_of_two_exponent(1) == 0
        assert power_of_two_exponent(64) == 6
        assert power_of_two_exponent(6) is None
        assert power_of_two_exponent(0) is None

    def test_parse_prime_aliases(self):
        assert parse_prime("bn254") == BN254_PRIME
        assert parse_prime("BN-128") == BN254_PRIME
        assert parse_prime("0x65") == 101
        assert parse_prime("101") == 101


# ── arithmetic ──────────────────────────────────────────────────────


class TestArithmetic:

    def test_coefficients_reduced(self):
        f = Polynomial.constant(205, P)
        assert f.constant_term == 3

    def test_cancellation_drops_terms(self):
        f = var(1) + var(2) - var(1)
        assert f == var(2)
        assert f.variables == frozenset({2})

    def test_zero(self):
        assert (var(1) - var(1)).is_zero
        assert Polynomial.zero(P).degree == -1

    def test_product_and_degree(self):
        f = (var(1) + 1) * (var(1) - 1)
        assert f == var(1) ** 2 - 1
        assert f.degree == 2
        assert f.degree_in(1) == 2
        assert not f.is_linear

    def test_int_on_either_side(self):
        assert 3 * var(1) == var(1) * 3
        assert 1 - var(1) == -(var(1) - 1)

    def test_mixing_fields_rejected(self):
        with pytest.raises(ValueError):
            var(1) + Polynomial.variable(1, 103)

    def test_linear_constructor(self):
        f = Polynomial.linear({1: 2, 2: -1}, P, constant=5)
        assert f.linear_coefficient(1) == 2
        assert f.linear_coefficient(2) == P - 1
        assert f.constant_term == 5
        assert f.is_linear


# ── substitution / evaluation ───────────────────────────────────────


class TestEvaluation:

    def test_substitute_partial(self):
        f = var(1) * var(2) + var(3)
        g = f.substitute({1: 4})
        assert g == 4 * var(2) + var(3)

    def test_evaluate_full(self):
        f = var(1) * (var(1) - 1)
        assert f.evaluate({1: 0}) == 0
        assert f.evaluate({1: 1}) == 0
        assert f.evaluate({1: 2}) == 2

    def test_evaluate_missing_variable(self):
        with pytest.raises(KeyError):
            (var(1) + var(2)).evaluate({1: 0})

    def test_rename(self):
        f = var(1) * var(2)
        assert f.rename({1: 7}) == var(7) * var(2)

    def test_monic(self):
        f = 4 * var(1) + 2
        m = f.monic()
        assert m.linear_coefficient(1) == 1
        assert m.constant_term == 2 * inverse(4, P) % P


# ── display ─────────────────────────────────────────────────────────


class TestDisplay:

    def test_to_string_names(self):
        f = var(1) * (var(1) - 1) + 3 * var(2)
        assert f.to_string({1: "x", 2: "y"}) == "x^2 - x + 3*y"

    def test_to_string_unsigned(self):
        assert (-var(1)).to_string(signed=False) == f"{P - 1}*x1"

    def test_deterministic(self):
        a = var(2) + var(1) * var(3) + 7
        b = 7 + var(1) * var(3) + var(2)
        assert str(a) == str(b)
        assert hash(a) == hash(b)
