"""
circuit_safety/constraint_model.py
══════════════════════════════════

Normalised representation of a flattened arithmetic circuit.

    ┌──────────────────────────────────────────────────────────────┐
    │  ConstraintModel                                             │
    │    prime        the field GF(p) every constraint lives in    │
    │    signals[i]   Signal with handle i (arena, contiguous)     │
    │    constraints  Constraint with handle j (P_j = 0)           │
    └──────────────────────────────────────────────────────────────┘

Signals and constraints refer to each other only through integer
handles, so the model is an acyclic, read-only structure that worker
threads can share freely once :meth:`ConstraintModel.validate` passed.

Roles follow Circom: ``input`` signals are the circuit's parameters,
``output`` and ``intermediate`` signals must be uniquely determined, and
``constant`` signals carry a fixed value (Circom's signal 0 is the
constant one) or, without a value, act like public parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from .errors import StructuralError
from .field import is_probable_prime
from .polynomial import Polynomial

logger = logging.getLogger(__name__)


class SignalRole(Enum):
    INPUT = "input"
    OUTPUT = "output"
    INTERMEDIATE = "intermediate"
    CONSTANT = "constant"

    @property
    def is_target(self) -> bool:
        """Signals that must be uniquely determined by the inputs."""
        return self in (SignalRole.OUTPUT, SignalRole.INTERMEDIATE)

    @classmethod
    def parse(cls, text: str) -> "SignalRole":
        key = text.strip().lower()
        aliases = {
            "in": cls.INPUT,
            "public": cls.INPUT,
            "private": cls.INPUT,
            "out": cls.OUTPUT,
            "intermediate": cls.INTERMEDIATE,
            "internal": cls.INTERMEDIATE,
            "wire": cls.INTERMEDIATE,
            "const": cls.CONSTANT,
            "fixed": cls.CONSTANT,
        }
        for member in cls:
            if member.value == key:
                return member
        if key in aliases:
            return aliases[key]
        raise ValueError(f"unknown signal role {text!r}")


@dataclass(frozen=True)
class Signal:
    """A circuit signal.

    Attributes
    ----------
    index : int
        Handle into :attr:`ConstraintModel.signals`.
    name : str
        Qualified name, e.g. ``main.bits[3]``.
    role : SignalRole
    scope : str
        Owning component instance (``main`` for the top level).
    value : Optional[int]
        Fixed value for ``constant`` signals.
    """
    index: int
    name: str
    role: SignalRole
    scope: str = "main"
    value: Optional[int] = None

    @property
    def is_target(self) -> bool:
        return self.role.is_target


@dataclass(frozen=True)
class Provenance:
    """Where a constraint came from, for human-readable reports."""
    template: str = ""
    component: str = ""

    def __str__(self) -> str:
        if self.template and self.component:
            return f"{self.component} ({self.template})"
        return self.component or self.template


@dataclass(frozen=True)
class Constraint:
    """``polynomial == 0`` over the model's field.

    ``assigned_signal`` is set for constraints produced by a Circom
    ``<==`` / ``==>`` assignment and names the assigned signal.
    """
    index: int
    polynomial: Polynomial
    assigned_signal: Optional[int] = None
    provenance: Provenance = field(default_factory=Provenance)

    @property
    def variables(self) -> FrozenSet[int]:
        return self.polynomial.variables

    @property
    def degree(self) -> int:
        return self.polynomial.degree

    @property
    def is_trivial(self) -> bool:
        """``0 = 0``; Circom emits these after linear simplification."""
        return self.polynomial.is_zero

    def is_satisfied_by(self, assignment: Mapping[int, int]) -> bool:
        return self.polynomial.evaluate(assignment) == 0

    def describe(self, names: Mapping[int, str]) -> str:
        text = f"{self.polynomial.to_string(names)} = 0"
        if self.provenance.component or self.provenance.template:
            text += f"  [{self.provenance}]"
        return text


class ConstraintModel:
    """Read-only circuit: prime, signal arena, constraint list."""

    def __init__(
        self,
        prime: int,
        signals: Sequence[Signal],
        constraints: Sequence[Constraint],
        name: str = "circuit",
    ) -> None:
        self.prime = prime
        self.name = name
        self._signals: Tuple[Signal, ...] = tuple(signals)
        self._constraints: Tuple[Constraint, ...] = tuple(constraints)
        self._by_name: Dict[str, int] = {s.name: s.index for s in self._signals}

    # ── properties ───────────────────────────────────────────────────

    @property
    def signals(self) -> Tuple[Signal, ...]:
        return self._signals

    @property
    def constraints(self) -> Tuple[Constraint, ...]:
        return self._constraints

    @property
    def signal_count(self) -> int:
        return len(self._signals)

    @property
    def constraint_count(self) -> int:
        return len(self._constraints)

    # ── lookup ───────────────────────────────────────────────────────

    def signal(self, index: int) -> Signal:
        return self._signals[index]

    def constraint(self, index: int) -> Constraint:
        return self._constraints[index]

    def signal_by_name(self, name: str) -> Signal:
        try:
            return self._signals[self._by_name[name]]
        except KeyError:
            raise StructuralError(f"unknown signal {name!r}") from None

    def name_of(self, index: int) -> str:
        if 0 <= index < len(self._signals):
            return self._signals[index].name
        return f"x{index}"

    @property
    def names(self) -> Dict[int, str]:
        return {s.index: s.name for s in self._signals}

    def signals_with_role(self, *roles: SignalRole) -> List[Signal]:
        return [s for s in self._signals if s.role in roles]

    @property
    def inputs(self) -> List[Signal]:
        return self.signals_with_role(SignalRole.INPUT)

    @property
    def targets(self) -> List[Signal]:
        """Outputs and intermediates, by handle."""
        return [s for s in self._signals if s.is_target]

    def constant_assignment(self) -> Dict[int, int]:
        """Values of constant signals that carry one."""
        return {
            s.index: s.value % self.prime
            for s in self._signals
            if s.role is SignalRole.CONSTANT and s.value is not None
        }

    def parameter_handles(self) -> FrozenSet[int]:
        """Inputs and value-less constants: shared by both witnesses."""
        return frozenset(
            s.index for s in self._signals
            if s.role is SignalRole.INPUT
            or (s.role is SignalRole.CONSTANT and s.value is None)
        )

    def is_satisfied_by(self, assignment: Mapping[int, int]) -> bool:
        full = dict(self.constant_assignment())
        full.update(assignment)
        return all(c.is_satisfied_by(full) for c in self._constraints)

    def violated_constraints(self, assignment: Mapping[int, int]) -> List[int]:
        full = dict(self.constant_assignment())
        full.update(assignment)
        return [c.index for c in self._constraints if not c.is_satisfied_by(full)]

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self._constraints)

    # ── validation ───────────────────────────────────────────────────

    def validate(self, expected_prime: Optional[int] = None) -> None:
        """Raise :class:`StructuralError` on the first inconsistency."""
        if self.prime < 2 or not is_probable_prime(self.prime):
            raise StructuralError("field modulus is not prime", prime=self.prime)
        if expected_prime is not None and expected_prime != self.prime:
            raise StructuralError(
                "model field does not match the configured prime",
                model_prime=self.prime,
                configured_prime=expected_prime,
            )

        seen_names: Dict[str, int] = {}
        for position, sig in enumerate(self._signals):
            if sig.index != position:
                raise StructuralError(
                    "signal handles must be contiguous and in order",
                    signal=sig.name, index=sig.index, position=position,
                )
            if sig.name in seen_names:
                raise StructuralError(
                    "duplicate signal name",
                    signal=sig.name, first=seen_names[sig.name], second=sig.index,
                )
            seen_names[sig.name] = sig.index
            if sig.value is not None and sig.role is not SignalRole.CONSTANT:
                raise StructuralError(
                    "only constant signals may carry a value", signal=sig.name,
                )
            if sig.value is not None and not 0 <= sig.value < self.prime:
                raise StructuralError(
                    "constant value outside the field", signal=sig.name, value=sig.value,
                )

        count = len(self._signals)
        for position, con in enumerate(self._constraints):
            if con.index != position:
                raise StructuralError(
                    "constraint handles must be contiguous and in order",
                    index=con.index, position=position,
                )
            if con.polynomial.prime != self.prime:
                raise StructuralError(
                    "constraint declared over a different field",
                    constraint=con.index,
                    constraint_prime=con.polynomial.prime,
                    model_prime=self.prime,
                )
            dangling = sorted(v for v in con.variables if not 0 <= v < count)
            if dangling:
                raise StructuralError(
                    "constraint references unknown signals",
                    constraint=con.index, signals=dangling,
                )
            if con.assigned_signal is not None and con.assigned_signal not in con.variables:
                raise StructuralError(
                    "assigned signal does not occur in its constraint",
                    constraint=con.index, signal=con.assigned_signal,
                )
        logger.debug(
            "model %s valid: %d signals, %d constraints",
            self.name, count, len(self._constraints),
        )

    def summary(self) -> Dict[str, object]:
        roles: Dict[str, int] = {}
        for s in self._signals:
            roles[s.role.value] = roles.get(s.role.value, 0) + 1
        degrees: Dict[int, int] = {}
        for c in self._constraints:
            degrees[c.degree] = degrees.get(c.degree, 0) + 1
        return {
            "name": self.name,
            "prime": self.prime,
            "signals": len(self._signals),
            "constraints": len(self._constraints),
            "roles": roles,
            "degrees": dict(sorted(degrees.items())),
        }

    def __repr__(self) -> str:
        return (
            f"ConstraintModel(name={self.name!r}, signals={len(self._signals)}, "
            f"constraints={len(self._constraints)})"
        )


class ModelBuilder:
    """Incremental construction helper used by loaders and tests.

    >>> b = ModelBuilder(prime=101)
    >>> x = b.input("x"); y = b.output("y")
    >>> b.add(b.var(y) - b.var(x))
    >>> model = b.build()
    """

    def __init__(self, prime: int, name: str = "circuit") -> None:
        self.prime = prime
        self.name = name
        self._signals: List[Signal] = []
        self._constraints: List[Constraint] = []

    def signal(
        self,
        name: str,
        role: SignalRole,
        scope: str = "main",
        value: Optional[int] = None,
    ) -> int:
        index = len(self._signals)
        self._signals.append(Signal(index, name, role, scope, value))
        return index

    def input(self, name: str, scope: str = "main") -> int:
        return self.signal(name, SignalRole.INPUT, scope)

    def output(self, name: str, scope: str = "main") -> int:
        return self.signal(name, SignalRole.OUTPUT, scope)

    def intermediate(self, name: str, scope: str = "main") -> int:
        return self.signal(name, SignalRole.INTERMEDIATE, scope)

    def constant(self, name: str, value: Optional[int] = None, scope: str = "main") -> int:
        return self.signal(name, SignalRole.CONSTANT, scope, value)

    def var(self, index: int) -> Polynomial:
        return Polynomial.variable(index, self.prime)

    def const(self, value: int) -> Polynomial:
        return Polynomial.constant(value, self.prime)

    def add(
        self,
        polynomial: Polynomial,
        assigned: Optional[int] = None,
        template: str = "",
        component: str = "",
    ) -> int:
        index = len(self._constraints)
        self._constraints.append(
            Constraint(index, polynomial, assigned, Provenance(template, component))
        )
        return index

    def handle(self, name: str) -> int:
        for s in self._signals:
            if s.name == name:
                return s.index
        raise StructuralError(f"unknown signal {name!r}")

    def build(self, validate: bool = True) -> ConstraintModel:
        model = ConstraintModel(self.prime, self._signals, self._constraints, self.name)
        if validate:
            model.validate()
        return model


def restrict(model: ConstraintModel, constraint_indices: Iterable[int]) -> List[Constraint]:
    """Constraints of *model* selected by handle, in handle order."""
    return [model.constraint(i) for i in sorted(set(constraint_indices))]
