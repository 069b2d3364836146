"""
circuit_safety/polynomial.py
════════════════════════════

Sparse multivariate polynomials with coefficients in GF(p).

Variables are integer handles (signal indices, or fresh handles minted by
the algebraic verifier for duplicated signals).  A *monomial* is a tuple of
``(variable, exponent)`` pairs sorted by variable with positive exponents;
the empty tuple is the constant monomial.

This representation is order-free: it is what constraints, heuristics and
signatures work with.  The Gröbner engine converts to dense exponent
vectors under an explicit term order (see ``groebner.py``).

Usage::

    p = 101
    x, y = Polynomial.variable(1, p), Polynomial.variable(2, p)
    f = x * (x - 1) + 3 * y
    f.degree                      # 2
    f.substitute({1: 1})          # 3*y
    f.to_string({1: "x", 2: "y"}) # 'x^2 - x + 3*y'
"""

from __future__ import annotations

from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .field import inverse, to_signed

Monomial = Tuple[Tuple[int, int], ...]

ONE: Monomial = ()


def monomial_mul(a: Monomial, b: Monomial) -> Monomial:
    """Product of two monomials (merge of sorted exponent lists)."""
    if not a:
        return b
    if not b:
        return a
    out: List[Tuple[int, int]] = []
    i = j = 0
    while i < len(a) and j < len(b):
        va, ea = a[i]
        vb, eb = b[j]
        if va == vb:
            out.append((va, ea + eb))
            i += 1
            j += 1
        elif va < vb:
            out.append(a[i])
            i += 1
        else:
            out.append(b[j])
            j += 1
    out.extend(a[i:])
    out.extend(b[j:])
    return tuple(out)


def monomial_degree(m: Monomial) -> int:
    return sum(e for _, e in m)


def _coerce(other: Union["Polynomial", int], prime: int) -> "Polynomial":
    if isinstance(other, Polynomial):
        if other.prime != prime:
            raise ValueError(
                f"cannot combine polynomials over different fields "
                f"({prime} vs {other.prime})"
            )
        return other
    if isinstance(other, int):
        return Polynomial.constant(other, prime)
    return NotImplemented  # type: ignore[return-value]


class Polynomial:
    """Immutable sparse polynomial over GF(prime)."""

    __slots__ = ("prime", "_terms", "_hash")

    def __init__(self, terms: Mapping[Monomial, int], prime: int) -> None:
        self.prime = prime
        clean: Dict[Monomial, int] = {}
        for mono, coeff in terms.items():
            c = coeff % prime
            if c:
                clean[mono] = c
        self._terms = clean
        self._hash: Optional[int] = None

    # ── constructors ─────────────────────────────────────────────────

    @classmethod
    def zero(cls, prime: int) -> "Polynomial":
        return cls({}, prime)

    @classmethod
    def constant(cls, value: int, prime: int) -> "Polynomial":
        return cls({ONE: value}, prime)

    @classmethod
    def variable(cls, var: int, prime: int, coefficient: int = 1) -> "Polynomial":
        return cls({((var, 1),): coefficient}, prime)

    @classmethod
    def linear(
        cls,
        coefficients: Mapping[int, int],
        prime: int,
        constant: int = 0,
    ) -> "Polynomial":
        """``Σ coefficients[v]·v + constant``."""
        terms: Dict[Monomial, int] = {((v, 1),): c for v, c in coefficients.items()}
        if constant:
            terms[ONE] = constant
        return cls(terms, prime)

    # ── basic queries ────────────────────────────────────────────────

    @property
    def terms(self) -> Dict[Monomial, int]:
        return dict(self._terms)

    def items(self) -> Iterator[Tuple[Monomial, int]]:
        return iter(self._terms.items())

    def __len__(self) -> int:
        return len(self._terms)

    @property
    def is_zero(self) -> bool:
        return not self._terms

    @property
    def is_constant(self) -> bool:
        return all(not m for m in self._terms)

    @property
    def constant_term(self) -> int:
        return self._terms.get(ONE, 0)

    @property
    def variables(self) -> FrozenSet[int]:
        return frozenset(v for m in self._terms for v, _ in m)

    @property
    def degree(self) -> int:
        """Total degree; ``-1`` for the zero polynomial."""
        if not self._terms:
            return -1
        return max(monomial_degree(m) for m in self._terms)

    def degree_in(self, var: int) -> int:
        best = 0
        for m in self._terms:
            for v, e in m:
                if v == var and e > best:
                    best = e
        return best

    @property
    def is_linear(self) -> bool:
        return self.degree <= 1

    def coefficient(self, mono: Monomial) -> int:
        return self._terms.get(mono, 0)

    def linear_coefficient(self, var: int) -> int:
        """Coefficient of the degree-one monomial ``var``."""
        return self._terms.get(((var, 1),), 0)

    def monomials_with(self, var: int) -> List[Monomial]:
        return [m for m in self._terms if any(v == var for v, _ in m)]

    def split(self, keep: Callable[[Monomial], bool]) -> Tuple["Polynomial", "Polynomial"]:
        """Partition terms into ``(matching, rest)``."""
        yes: Dict[Monomial, int] = {}
        no: Dict[Monomial, int] = {}
        for m, c in self._terms.items():
            (yes if keep(m) else no)[m] = c
        return Polynomial(yes, self.prime), Polynomial(no, self.prime)

    # ── arithmetic ───────────────────────────────────────────────────

    def __add__(self, other: Union["Polynomial", int]) -> "Polynomial":
        other = _coerce(other, self.prime)
        if other is NotImplemented:
            return NotImplemented
        terms = dict(self._terms)
        for m, c in other._terms.items():
            terms[m] = (terms.get(m, 0) + c) % self.prime
        return Polynomial(terms, self.prime)

    __radd__ = __add__

    def __neg__(self) -> "Polynomial":
        return Polynomial({m: -c for m, c in self._terms.items()}, self.prime)

    def __sub__(self, other: Union["Polynomial", int]) -> "Polynomial":
        other = _coerce(other, self.prime)
        if other is NotImplemented:
            return NotImplemented
        return self + (-other)

    def __rsub__(self, other: Union["Polynomial", int]) -> "Polynomial":
        other = _coerce(other, self.prime)
        if other is NotImplemented:
            return NotImplemented
        return other + (-self)

    def __mul__(self, other: Union["Polynomial", int]) -> "Polynomial":
        if isinstance(other, int):
            return self.scale(other)
        other = _coerce(other, self.prime)
        if other is NotImplemented:
            return NotImplemented
        p = self.prime
        terms: Dict[Monomial, int] = {}
        for ma, ca in self._terms.items():
            for mb, cb in other._terms.items():
                m = monomial_mul(ma, mb)
                terms[m] = (terms.get(m, 0) + ca * cb) % p
        return Polynomial(terms, p)

    __rmul__ = __mul__

    def __pow__(self, exponent: int) -> "Polynomial":
        if exponent < 0:
            raise ValueError("negative exponent")
        result = Polynomial.constant(1, self.prime)
        base = self
        while exponent:
            if exponent & 1:
                result = result * base
            base = base * base
            exponent >>= 1
        return result

    def scale(self, factor: int) -> "Polynomial":
        return Polynomial(
            {m: c * factor for m, c in self._terms.items()}, self.prime
        )

    def monic(self, key: Optional[Callable[[Monomial], object]] = None) -> "Polynomial":
        """Scale so the coefficient of the largest monomial is 1.

        Without *key* the largest monomial is chosen by total degree, then
        by the canonical textual order used in :meth:`to_string`.
        """
        if not self._terms:
            return self
        lead = max(self._terms, key=key or _display_key)
        return self.scale(inverse(self._terms[lead], self.prime))

    # ── substitution / evaluation ────────────────────────────────────

    def substitute(self, values: Mapping[int, int]) -> "Polynomial":
        """Replace variables in *values* by field constants."""
        if not values:
            return self
        p = self.prime
        terms: Dict[Monomial, int] = {}
        for m, c in self._terms.items():
            coeff = c
            rest: List[Tuple[int, int]] = []
            for v, e in m:
                if v in values:
                    coeff = coeff * pow(values[v], e, p) % p
                else:
                    rest.append((v, e))
            if coeff:
                key = tuple(rest)
                terms[key] = (terms.get(key, 0) + coeff) % p
        return Polynomial(terms, p)

    def rename(self, mapping: Mapping[int, int]) -> "Polynomial":
        """Rename variables; unmapped variables are kept."""
        terms: Dict[Monomial, int] = {}
        for m, c in self._terms.items():
            key: Monomial = ONE
            for v, e in m:
                key = monomial_mul(key, ((mapping.get(v, v), e),))
            terms[key] = (terms.get(key, 0) + c) % self.prime
        return Polynomial(terms, self.prime)

    def evaluate(self, values: Mapping[int, int]) -> int:
        """Value of the polynomial at a full assignment of its variables."""
        missing = self.variables - set(values)
        if missing:
            raise KeyError(f"no value for variables {sorted(missing)}")
        return self.substitute(values).constant_term

    # ── comparison / display ─────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if isinstance(other, int):
            other = Polynomial.constant(other, self.prime)
        if not isinstance(other, Polynomial):
            return NotImplemented
        return self.prime == other.prime and self._terms == other._terms

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash((self.prime, frozenset(self._terms.items())))
        return self._hash

    def sorted_terms(self) -> List[Tuple[Monomial, int]]:
        return sorted(self._terms.items(), key=lambda mc: _display_key(mc[0]), reverse=True)

    def to_string(
        self,
        names: Optional[Union[Mapping[int, str], Callable[[int], str]]] = None,
        signed: bool = True,
    ) -> str:
        """Deterministic human-readable rendering.

        Coefficients above ``p/2`` print as negatives when *signed*.
        """
        if not self._terms:
            return "0"
        if names is None:
            namer: Callable[[int], str] = lambda v: f"x{v}"
        elif callable(names):
            namer = names
        else:
            table = names
            namer = lambda v: table.get(v, f"x{v}")

        pieces: List[str] = []
        for mono, coeff in self.sorted_terms():
            c = to_signed(coeff, self.prime) if signed else coeff
            negative = c < 0
            mag = -c if negative else c
            body = "*".join(
                namer(v) if e == 1 else f"{namer(v)}^{e}" for v, e in mono
            )
            if not body:
                text = str(mag)
            elif mag == 1:
                text = body
            else:
                text = f"{mag}*{body}"
            if not pieces:
                pieces.append(f"-{text}" if negative else text)
            else:
                pieces.append(f"- {text}" if negative else f"+ {text}")
        return " ".join(pieces)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Polynomial({self.to_string()!r}, p={self.prime})"


def _display_key(mono: Monomial) -> Tuple[int, Tuple[Tuple[int, int], ...]]:
    # degree first, then smaller variable handles count as "larger"
    return (monomial_degree(mono), tuple((-v, e) for v, e in mono))


def sum_polynomials(polys: Iterable[Polynomial], prime: int) -> Polynomial:
    total = Polynomial.zero(prime)
    for p in polys:
        total = total + p
    return total
