"""
circuit_safety/expression_parser.py
═══════════════════════════════════

Grammar and visitor for single constraint equations such as::

    out <== a * b + 3
    bits[0] * (bits[0] - 1) === 0
    main.c.x == 2 * y

``<==`` marks the left-hand signal as assigned, ``==>`` the right-hand
one; ``===``, ``==`` and ``=`` are plain equalities.  The result is the
polynomial ``lhs - rhs`` over the configured field.

Signal names are resolved to handles through a caller-supplied function,
so the same parser serves the JSON loader (fixed signal table) and tests
(auto-declaring builders).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from .errors import CircuitSafetyError, ModelParseError
from .polynomial import Polynomial

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR
# ═══════════════════════════════════════════════════════════════════

GRAMMAR_SOURCE = r'''
    constraint     = _ expr _ relation _ expr _
    relation       = "===" / "<==" / "==>" / "==" / "="

    expr           = term more_terms
    more_terms     = signed_term*
    signed_term    = _ addop _ term
    addop          = "+" / "-"

    term           = unary more_factors
    more_factors   = product_factor*
    product_factor = _ "*" _ unary

    unary          = negation / power
    negation       = "-" _ unary
    power          = primary exponent?
    exponent       = _ "^" _ integer

    primary        = integer / signal / group
    group          = "(" _ expr _ ")"

    integer        = ~"0[xX][0-9a-fA-F]+|[0-9]+"
    signal         = ~r"[A-Za-z_$][A-Za-z0-9_$]*(\[[0-9]+\])*(\.[A-Za-z_$][A-Za-z0-9_$]*(\[[0-9]+\])*)*"
    _              = ~"[ \t]*"
'''

CONSTRAINT_GRAMMAR = Grammar(GRAMMAR_SOURCE)

ASSIGN_LEFT = "<=="
ASSIGN_RIGHT = "==>"


@dataclass(frozen=True)
class ParsedConstraint:
    polynomial: Polynomial
    assigned_signal: Optional[int]
    relation: str


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — VISITOR (parse tree → Polynomial)
# ═══════════════════════════════════════════════════════════════════

class _PolynomialBuilder(NodeVisitor):
    """Evaluates the parse tree bottom-up into polynomials."""

    unwrapped_exceptions = (CircuitSafetyError,)

    def __init__(self, prime: int, resolve: Callable[[str], int]) -> None:
        self.prime = prime
        self.resolve = resolve

    def generic_visit(self, node, visited_children):
        return visited_children or node

    def visit_constraint(self, node, visited_children):
        _, lhs, _, relation, _, rhs, _ = visited_children
        return lhs, relation, rhs

    def visit_relation(self, node, visited_children):
        return node.text

    def visit_expr(self, node, visited_children):
        first, rest = visited_children
        total = first
        for sign, value in rest:
            total = total - value if sign == "-" else total + value
        return total

    def visit_more_terms(self, node, visited_children):
        return _as_list(visited_children)

    def visit_signed_term(self, node, visited_children):
        _, sign, _, value = visited_children
        return sign, value

    def visit_addop(self, node, visited_children):
        return node.text

    def visit_term(self, node, visited_children):
        first, rest = visited_children
        product = first
        for factor in rest:
            product = product * factor
        return product

    def visit_more_factors(self, node, visited_children):
        return _as_list(visited_children)

    def visit_product_factor(self, node, visited_children):
        return visited_children[3]

    def visit_unary(self, node, visited_children):
        return visited_children[0]

    def visit_negation(self, node, visited_children):
        return -visited_children[2]

    def visit_power(self, node, visited_children):
        base, exponent = visited_children
        if isinstance(exponent, list):
            return base ** exponent[0]
        return base

    def visit_exponent(self, node, visited_children):
        return visited_children[3]

    def visit_primary(self, node, visited_children):
        value = visited_children[0]
        if isinstance(value, int):
            return Polynomial.constant(value, self.prime)
        return value

    def visit_group(self, node, visited_children):
        return visited_children[2]

    def visit_integer(self, node, visited_children):
        text = node.text
        if text[:2].lower() == "0x":
            return int(text, 16)
        return int(text, 10)

    def visit_signal(self, node, visited_children):
        return Polynomial.variable(self.resolve(node.text), self.prime)


def _as_list(children) -> list:
    if isinstance(children, Node):
        return []
    return list(children)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

class ConstraintParser:
    """Parses constraint equations over GF(*prime*)."""

    def __init__(self, prime: int, resolve: Callable[[str], int]) -> None:
        self.prime = prime
        self._builder = _PolynomialBuilder(prime, resolve)

    def parse(
        self,
        text: str,
        source: str = "",
        line: Optional[int] = None,
    ) -> ParsedConstraint:
        try:
            tree = CONSTRAINT_GRAMMAR.parse(text)
        except ParseError as exc:
            raise ModelParseError(
                f"cannot parse constraint {text!r}",
                source=source,
                line=line if line is not None else exc.line(),
                column=exc.column(),
            ) from exc
        try:
            lhs, relation, rhs = self._builder.visit(tree)
        except VisitationError as exc:
            raise ModelParseError(
                f"cannot evaluate constraint {text!r}: {exc.original_class.__name__}",
                source=source, line=line,
            ) from exc

        assigned: Optional[int] = None
        if relation == ASSIGN_LEFT:
            assigned = _single_signal(lhs)
        elif relation == ASSIGN_RIGHT:
            assigned = _single_signal(rhs)
        if relation in (ASSIGN_LEFT, ASSIGN_RIGHT) and assigned is None:
            raise ModelParseError(
                f"'{relation}' must assign a single signal in {text!r}",
                source=source, line=line,
            )
        polynomial = lhs - rhs
        if assigned is not None and assigned not in polynomial.variables:
            # x <== x cancels out; keep it as an ordinary equality
            logger.debug("assignment in %r cancels its target", text)
            assigned = None
        return ParsedConstraint(polynomial, assigned, relation)

    def parse_lines(self, text: str, source: str = "") -> List[ParsedConstraint]:
        """One constraint per line; blank lines and ``#``/``//`` comments skipped."""
        out: List[ParsedConstraint] = []
        for lineno, raw in enumerate(text.splitlines(), start=1):
            stripped = raw.strip()
            if not stripped or stripped.startswith(("#", "//")):
                continue
            out.append(self.parse(stripped, source=source, line=lineno))
        return out


def _single_signal(poly: Polynomial) -> Optional[int]:
    items = list(poly.items())
    if len(items) != 1:
        return None
    mono, coeff = items[0]
    if coeff != 1 or len(mono) != 1 or mono[0][1] != 1:
        return None
    return mono[0][0]
