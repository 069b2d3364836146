"""
circuit_safety/groebner.py
══════════════════════════

Buchberger's algorithm over GF(p) with cooperative budget checks, plus
rational point extraction from lex Gröbner bases.

Representation
--------------
Inside the engine a polynomial is a ``dict`` mapping dense exponent
tuples to coefficients.  Ring index 0 is the *largest* variable, so the
lex order is plain tuple comparison::

    ring index   0     1     2    ...   n-1
    handle       u     a     a'   ...   x        (u > a > a' > ... > x)

:class:`GroebnerEngine` converts between :class:`Polynomial` (handles)
and the dense form.

Algorithm
---------
* generators are reduced and made monic on insertion;
* critical pairs are kept in a heap ordered by the term order of their
  lcm (normal selection strategy);
* pairs with coprime leading monomials are skipped (product criterion);
* the budget is checked after every pair and every 64 reduction steps;
  degree and basis-size limits are checked when a new element enters;
* the final basis is minimal and fully inter-reduced.

Point extraction walks a lex basis from the smallest variable up,
solving univariate gcds with sympy's finite-field routines
(``gf_pow_mod``, ``gf_gcd``, ``gf_factor_sqf``) and backtracking over
free choices.
"""

from __future__ import annotations

import heapq
import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sympy.polys.domains import ZZ
from sympy.polys.galoistools import gf_factor_sqf, gf_gcd, gf_pow_mod, gf_sub

from .budget import Budget
from .field import inverse
from .polynomial import Polynomial

logger = logging.getLogger(__name__)

Exponent = Tuple[int, ...]
Terms = Dict[Exponent, int]

REDUCTION_CHECK_INTERVAL = 64
BRUTE_FORCE_FIELD_LIMIT = 1 << 12


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — TERM ORDERS AND MONOMIAL ARITHMETIC
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TermOrder:
    name: str
    key: Callable[[Exponent], object]


LEX = TermOrder("lex", lambda e: e)
GREVLEX = TermOrder("grevlex", lambda e: (sum(e), tuple(-x for x in reversed(e))))


def _divides(a: Exponent, b: Exponent) -> bool:
    return all(x <= y for x, y in zip(a, b))


def _lcm(a: Exponent, b: Exponent) -> Exponent:
    return tuple(max(x, y) for x, y in zip(a, b))


def _coprime(a: Exponent, b: Exponent) -> bool:
    return all(not (x and y) for x, y in zip(a, b))


def _add(a: Exponent, b: Exponent) -> Exponent:
    return tuple(x + y for x, y in zip(a, b))


def _sub(a: Exponent, b: Exponent) -> Exponent:
    return tuple(x - y for x, y in zip(a, b))


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — ENGINE
# ═══════════════════════════════════════════════════════════════════

@dataclass
class GroebnerResult:
    basis: List[Terms]
    steps: int
    is_unit: bool
    engine: "GroebnerEngine"

    def polynomials(self) -> List[Polynomial]:
        return [self.engine.to_polynomial(g) for g in self.basis]

    def __len__(self) -> int:
        return len(self.basis)


class GroebnerEngine:
    """Ring GF(prime)[variables] with ``variables[0]`` the largest."""

    def __init__(
        self,
        prime: int,
        variables: Sequence[int],
        order: TermOrder = LEX,
    ) -> None:
        self.prime = prime
        self.variables: Tuple[int, ...] = tuple(variables)
        self.index: Dict[int, int] = {h: i for i, h in enumerate(self.variables)}
        if len(self.index) != len(self.variables):
            raise ValueError("duplicate ring variable")
        self.nvars = len(self.variables)
        self.order = order
        self.one: Exponent = (0,) * self.nvars

    # ── conversion ───────────────────────────────────────────────────

    def embed(self, poly: Polynomial) -> Terms:
        out: Terms = {}
        for mono, c in poly.items():
            e = [0] * self.nvars
            for v, k in mono:
                e[self.index[v]] += k
            key = tuple(e)
            out[key] = (out.get(key, 0) + c) % self.prime
        return {k: c for k, c in out.items() if c}

    def to_polynomial(self, terms: Terms) -> Polynomial:
        out = {}
        for e, c in terms.items():
            mono = tuple(sorted(
                (self.variables[i], k) for i, k in enumerate(e) if k
            ))
            out[mono] = c
        return Polynomial(out, self.prime)

    # ── basic operations ─────────────────────────────────────────────

    def lead(self, f: Terms) -> Exponent:
        return max(f, key=self.order.key)

    def monic(self, f: Terms) -> Terms:
        inv = inverse(f[self.lead(f)], self.prime)
        p = self.prime
        return {e: c * inv % p for e, c in f.items()}

    def is_constant(self, f: Terms) -> bool:
        return len(f) == 1 and self.one in f

    def s_polynomial(self, f: Terms, lf: Exponent, g: Terms, lg: Exponent) -> Terms:
        """S(f, g) for monic *f* and *g*."""
        lcm = _lcm(lf, lg)
        sf, sg = _sub(lcm, lf), _sub(lcm, lg)
        p = self.prime
        out: Terms = {}
        for e, c in f.items():
            key = _add(e, sf)
            out[key] = (out.get(key, 0) + c) % p
        for e, c in g.items():
            key = _add(e, sg)
            out[key] = (out.get(key, 0) - c) % p
        return {k: c for k, c in out.items() if c}

    def reduce(
        self,
        f: Terms,
        basis: Sequence[Terms],
        leads: Sequence[Exponent],
        budget: Optional[Budget] = None,
    ) -> Terms:
        """Full normal form of *f* modulo monic *basis*."""
        p = self.prime
        work = dict(f)
        remainder: Terms = {}
        steps = 0
        while work:
            lt = self.lead(work)
            c = work[lt]
            for g, lg in zip(basis, leads):
                if _divides(lg, lt):
                    shift = _sub(lt, lg)
                    for e, gc in g.items():
                        key = _add(e, shift)
                        value = (work.get(key, 0) - c * gc) % p
                        if value:
                            work[key] = value
                        else:
                            work.pop(key, None)
                    break
            else:
                remainder[lt] = c
                del work[lt]
            steps += 1
            if budget is not None and steps % REDUCTION_CHECK_INTERVAL == 0:
                budget.checkpoint("reduction")
        return remainder

    def normal_form(self, poly: Polynomial, result: GroebnerResult) -> Polynomial:
        leads = [self.lead(g) for g in result.basis]
        return self.to_polynomial(self.reduce(self.embed(poly), result.basis, leads))

    # ── Buchberger ───────────────────────────────────────────────────

    def _unit(self, steps: int) -> GroebnerResult:
        return GroebnerResult([{self.one: 1}], steps, True, self)

    def basis(
        self,
        generators: Sequence[Polynomial],
        budget: Optional[Budget] = None,
    ) -> GroebnerResult:
        G: List[Terms] = []
        leads: List[Exponent] = []
        pairs: List[Tuple[object, int, int]] = []
        steps = 0
        if budget is not None:
            budget.checkpoint("start")

        def admit(h: Terms) -> None:
            lh = self.lead(h)
            new = len(G)
            G.append(h)
            leads.append(lh)
            for i in range(new):
                heapq.heappush(pairs, (self.order.key(_lcm(leads[i], lh)), i, new))

        for poly in generators:
            if budget is not None:
                budget.checkpoint("generator")
                budget.check_degree(poly.degree)
            h = self.reduce(self.embed(poly), G, leads, budget)
            if not h:
                continue
            h = self.monic(h)
            if self.is_constant(h):
                return self._unit(steps)
            admit(h)

        while pairs:
            _, i, j = heapq.heappop(pairs)
            steps += 1
            if budget is not None:
                budget.checkpoint("s-pair")
            if _coprime(leads[i], leads[j]):
                continue
            s = self.s_polynomial(G[i], leads[i], G[j], leads[j])
            h = self.reduce(s, G, leads, budget)
            if not h:
                continue
            h = self.monic(h)
            if self.is_constant(h):
                logger.debug("unit ideal after %d pairs", steps)
                return self._unit(steps)
            if budget is not None:
                budget.check_degree(max(sum(e) for e in h))
            admit(h)
            if budget is not None:
                budget.check_basis(len(G))

        reduced = self._interreduce(G, leads, budget)
        logger.debug(
            "basis of %d elements after %d pairs (%d ring variables)",
            len(reduced), steps, self.nvars,
        )
        return GroebnerResult(reduced, steps, False, self)

    def _interreduce(
        self,
        G: List[Terms],
        leads: List[Exponent],
        budget: Optional[Budget],
    ) -> List[Terms]:
        keep: List[int] = []
        for i, li in enumerate(leads):
            redundant = False
            for j, lj in enumerate(leads):
                if j == i or not _divides(lj, li):
                    continue
                if lj != li or j < i:
                    redundant = True
                    break
            if not redundant:
                keep.append(i)
        minimal = [G[i] for i in keep]
        minimal_leads = [leads[i] for i in keep]
        out: List[Terms] = []
        for k, g in enumerate(minimal):
            others = minimal[:k] + minimal[k + 1:]
            other_leads = minimal_leads[:k] + minimal_leads[k + 1:]
            out.append(self.monic(self.reduce(g, others, other_leads, budget)))
        out.sort(key=lambda g: self.order.key(self.lead(g)), reverse=True)
        return out

    # ── rational points ──────────────────────────────────────────────

    def find_point(
        self,
        result: GroebnerResult,
        budget: Budget,
        rng: Optional[random.Random] = None,
        preferred: Optional[Mapping[int, int]] = None,
    ) -> Optional[Dict[int, int]]:
        """A GF(p) point of the ideal, keyed by handle, or ``None``.

        *result* must come from a lex basis.  *preferred* lists values
        tried first for free variables.
        """
        if result.is_unit:
            return None
        if self.order is not LEX:
            raise ValueError("point extraction needs a lex basis")
        rng = rng or random.Random(0)
        preferred = preferred or {}
        n = self.nvars

        buckets: List[List[Terms]] = [[] for _ in range(n)]
        for g in result.basis:
            top = min(i for e in g for i, k in enumerate(e) if k)
            buckets[top].append(g)

        if not n:
            return {}
        values: List[int] = [0] * n
        frames: List[Tuple[int, List[int], int]] = []
        k = n - 1
        candidates = self._candidates(buckets[k], k, values, rng, preferred)
        position = 0
        while True:
            budget.count_search_node()
            if position < len(candidates):
                values[k] = candidates[position]
                if k == 0:
                    return {self.variables[i]: values[i] for i in range(n)}
                frames.append((k, candidates, position + 1))
                k -= 1
                budget.checkpoint("witness search")
                candidates = self._candidates(buckets[k], k, values, rng, preferred)
                position = 0
                continue
            if not frames:
                return None
            k, candidates, position = frames.pop()

    def _candidates(
        self,
        polys: List[Terms],
        k: int,
        values: List[int],
        rng: random.Random,
        preferred: Mapping[int, int],
    ) -> List[int]:
        p = self.prime
        univariates: List[List[int]] = []
        for g in polys:
            coeffs: Dict[int, int] = {}
            for e, c in g.items():
                term = c
                for i in range(k + 1, self.nvars):
                    if e[i]:
                        term = term * pow(values[i], e[i], p) % p
                coeffs[e[k]] = (coeffs.get(e[k], 0) + term) % p
            dense = [coeffs.get(d, 0) for d in range(max(coeffs), -1, -1)]
            dense = _strip(dense)
            if not dense:
                continue
            if len(dense) == 1:
                return []
            univariates.append(dense)

        if not univariates:
            picks = []
            handle = self.variables[k]
            if handle in preferred:
                picks.append(preferred[handle] % p)
            picks += [0, 1, 2, p - 1, rng.randrange(p)]
            seen: List[int] = []
            for v in picks:
                v %= p
                if v not in seen:
                    seen.append(v)
            return seen

        g = univariates[0]
        for other in univariates[1:]:
            g = _strip([int(c) for c in gf_gcd(_zz(g), _zz(other), p, ZZ)])
            if len(g) <= 1:
                return []
        return univariate_roots(g, p)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — UNIVARIATE ROOTS
# ═══════════════════════════════════════════════════════════════════

def _strip(coeffs: List[int]) -> List[int]:
    i = 0
    while i < len(coeffs) and coeffs[i] == 0:
        i += 1
    return coeffs[i:]


def _zz(coeffs: List[int]) -> list:
    return [ZZ(c) for c in coeffs]


def _horner(coeffs: Sequence[int], x: int, p: int) -> int:
    acc = 0
    for c in coeffs:
        acc = (acc * x + c) % p
    return acc


def univariate_roots(coeffs: List[int], prime: int) -> List[int]:
    """Distinct roots in GF(prime) of a dense polynomial (highest first)."""
    f = _strip([c % prime for c in coeffs])
    if len(f) <= 1:
        return []
    if len(f) == 2:
        return [(-f[1]) * inverse(f[0], prime) % prime]
    if prime <= BRUTE_FORCE_FIELD_LIMIT:
        return [x for x in range(prime) if _horner(f, x, prime) == 0]
    x = _zz([1, 0])
    frobenius = gf_pow_mod(x, prime, _zz(f), prime, ZZ)
    split = gf_gcd(_zz(f), gf_sub(frobenius, x, prime, ZZ), prime, ZZ)
    if len(split) <= 1:
        return []
    _, factors = gf_factor_sqf(split, prime, ZZ)
    roots = set()
    for fac in factors:
        if len(fac) == 2:
            roots.add(int(-fac[1] * inverse(int(fac[0]), prime)) % prime)
    return sorted(roots)
