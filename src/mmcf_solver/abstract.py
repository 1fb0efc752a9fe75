"""Solver-facing primitives of the abstract representation.

Sub-models and the parent block expose their decision variables and linear
constraints through these small classes; a solver only needs to walk them.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

INF = math.inf


@dataclass(eq=False)
class Variable:
    """A single decision variable.

    Attributes:
        name: Human-readable identifier, unique within its owner.
        lower: Lower bound (default 0.0).
        upper: Upper bound; ``inf`` means unbounded.
        integer: True when the variable must take integer values.
        value: Primal value, written back by a solver (0.0 until then).
    """

    name: str
    lower: float = 0.0
    upper: float = INF
    integer: bool = False
    value: float = 0.0

    def fix(self, value: float) -> None:
        self.lower = self.upper = value


@dataclass(eq=False)
class LinearConstraint:
    """A linear row ``lhs <= sum(coeff * var) <= rhs``.

    Attributes:
        name: Human-readable identifier.
        coefficients: Sequence of (Variable, coefficient) pairs.
        lhs: Lower bound of the row; ``-inf`` means none.
        rhs: Upper bound of the row; ``inf`` means none.
        dual: Dual value, written back by a solver or set by the caller.
    """

    name: str
    coefficients: list[tuple[Variable, float]] = field(default_factory=list)
    lhs: float = -INF
    rhs: float = INF
    dual: float = 0.0

    def set_lhs(self, value: float) -> None:
        self.lhs = float(value)

    def set_rhs(self, value: float) -> None:
        self.rhs = float(value)

    def set_both(self, value: float) -> None:
        """Turn the row into an equality with the given right-hand side."""
        self.lhs = self.rhs = float(value)

    def set_coefficients(self, coefficients: Iterable[tuple[Variable, float]]) -> None:
        self.coefficients = [(var, float(coeff)) for var, coeff in coefficients]

    @property
    def is_equality(self) -> bool:
        return self.lhs == self.rhs

    def activity(self) -> float:
        """Value of the linear function at the current variable values."""
        return sum(coeff * var.value for var, coeff in self.coefficients)

    def violation(self) -> float:
        value = self.activity()
        return max(0.0, self.lhs - value, value - self.rhs)


class SubModel(ABC):
    """Capability interface of a sub-model owned by an MMCFBlock.

    A sub-model owns a disjoint set of variables and constraints, so a solver
    may process the sub-models of one block independently.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._variables: list[Variable] = []
        self._constraints: list[LinearConstraint] = []
        self._has_variables = False
        self._has_constraints = False

    @abstractmethod
    def generate_abstract_variables(self) -> None:
        """Create the variables of the sub-model; calling twice is a no-op."""

    @abstractmethod
    def generate_abstract_constraints(self) -> None:
        """Create the constraints of the sub-model; calling twice is a no-op."""

    @abstractmethod
    def objective(self) -> Sequence[tuple[Variable, float]]:
        """Linear objective terms (minimization)."""

    def discard_constraints(self) -> None:
        """Drop every constraint, keeping the variables."""
        self._constraints = []
        self._has_constraints = False

    def variables(self) -> Sequence[Variable]:
        return self._variables

    def constraints(self) -> Sequence[LinearConstraint]:
        return self._constraints

    def get_x(self, i: int) -> float:
        """Primal value of the i-th variable (0.0 before variables exist)."""
        if not self._has_variables:
            return 0.0
        return self._variables[i].value

    def get_variable(self, i: int) -> Variable | None:
        if not self._has_variables:
            return None
        return self._variables[i]

    @abstractmethod
    def get_dual(self, i: int = 0) -> float:
        """Dual value of the i-th constraint of the sub-model."""

    @abstractmethod
    def set_dual(self, value: float, i: int = 0) -> None:
        """Overwrite the dual value of the i-th constraint of the sub-model."""

    def get_potential(self, node: int) -> float:
        return 0.0

    def set_potential(self, value: float, node: int) -> None:
        return None
