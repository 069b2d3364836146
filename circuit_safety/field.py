"""
circuit_safety/field.py
═══════════════════════

Prime-field helpers shared by the polynomial, heuristic and algebraic
layers.  Elements are plain Python ``int`` values normalised into the
canonical range ``[0, p)``; there is no wrapper type.

    ┌─────────────────────────────────────────────────────────────┐
    │  BN254_PRIME     scalar field of alt_bn128 (Circom default) │
    │  BLS12_381_PRIME scalar field of BLS12-381                  │
    │  GOLDILOCKS      2^64 - 2^32 + 1                            │
    └─────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Dict, Optional

BN254_PRIME: int = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
BLS12_381_PRIME: int = (
    52435875175126190479447740508185965837690552500527637822603658699938581184513
)
GOLDILOCKS_PRIME: int = 18446744069414584321

KNOWN_PRIMES: Dict[str, int] = {
    "bn128": BN254_PRIME,
    "bn254": BN254_PRIME,
    "bls12381": BLS12_381_PRIME,
    "goldilocks": GOLDILOCKS_PRIME,
}


def normalize(value: int, prime: int) -> int:
    """Map *value* into ``[0, prime)``."""
    return value % prime


def inverse(value: int, prime: int) -> int:
    """Multiplicative inverse of *value* modulo *prime*.

    Raises ``ZeroDivisionError`` for zero, like ``pow`` does.
    """
    value %= prime
    if value == 0:
        raise ZeroDivisionError("zero has no inverse in a field")
    return pow(value, -1, prime)


def to_signed(value: int, prime: int) -> int:
    """Prettify: elements above ``p/2`` are shown as negatives."""
    value %= prime
    if value > prime // 2:
        return value - prime
    return value


def format_element(value: int, prime: int) -> str:
    return str(to_signed(value, prime))


def is_probable_prime(n: int, rounds: int = 16) -> bool:
    """Deterministic-base Miller–Rabin, good for field declarations."""
    if n < 2:
        return False
    small = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37)
    for q in small:
        if n % q == 0:
            return n == q
    d, r = n - 1, 0
    while d % 2 == 0:
        d //= 2
        r += 1
    for a in small[:rounds]:
        x = pow(a, d, n)
        if x in (1, n - 1):
            continue
        for _ in range(r - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def power_of_two_exponent(value: int) -> Optional[int]:
    """Return ``k`` if ``value == 2**k`` (as an integer), else ``None``."""
    if value <= 0 or value & (value - 1):
        return None
    return value.bit_length() - 1


def parse_prime(text: str) -> int:
    """Accept a decimal/hex literal or one of :data:`KNOWN_PRIMES`."""
    key = text.strip().lower().replace("-", "").replace("_", "")
    if key in KNOWN_PRIMES:
        return KNOWN_PRIMES[key]
    return int(text.strip(), 0)
