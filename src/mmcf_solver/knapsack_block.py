"""Binary knapsack sub-model used by the per-arc decomposition."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from .abstract import LinearConstraint, SubModel, Variable

logger = logging.getLogger(__name__)


class BinaryKnapsackBlock(SubModel):
    """Knapsack with items selected in [0, 1] under a single capacity row.

    Item i has a weight and a profit. Items flagged as integral are binary,
    the others may be selected fractionally. The objective is minimized:

        min  sum(profit[i] * x[i])
        s.t. sum(weight[i] * x[i]) <= bound
             0 <= x[i] <= 1

    Weights may be negative, which lets an item open room for the others.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.bound = 0.0
        self.weights = np.zeros(0)
        self.profits = np.zeros(0)
        self.integrality: list[bool] = []

    def load(
        self,
        bound: float,
        weights: Sequence[float] | np.ndarray,
        profits: Sequence[float] | np.ndarray,
        integrality: Sequence[bool] | None = None,
    ) -> None:
        weights = np.array(weights, dtype=float)
        profits = np.array(profits, dtype=float)
        if weights.shape != profits.shape:
            raise ValueError(
                f"Knapsack weights ({weights.shape[0]}) and profits ({profits.shape[0]}) differ in length."
            )
        self.bound = float(bound)
        self.weights = weights
        self.profits = profits
        self.integrality = (
            [False] * weights.shape[0] if integrality is None else [bool(v) for v in integrality]
        )
        self._variables = []
        self._constraints = []
        self._has_variables = self._has_constraints = False

    @property
    def n_items(self) -> int:
        return int(self.weights.shape[0])

    def generate_abstract_variables(self) -> None:
        if self._has_variables:
            return
        self._variables = [
            Variable(name=f"{self.name}x[{item}]", lower=0.0, upper=1.0, integer=integral)
            for item, integral in enumerate(self.integrality)
        ]
        self._has_variables = True

    def generate_abstract_constraints(self) -> None:
        if self._has_constraints:
            return
        self.generate_abstract_variables()
        row = LinearConstraint(name=f"{self.name}capacity")
        row.set_coefficients(zip(self._variables, self.weights))
        row.set_rhs(self.bound)
        self._constraints = [row]
        self._has_constraints = True

    def objective(self) -> list[tuple[Variable, float]]:
        if not self._has_variables:
            return []
        return list(zip(self._variables, (float(p) for p in self.profits)))

    def get_dual(self, i: int = 0) -> float:
        if not self._has_constraints:
            return 0.0
        return self._constraints[i].dual

    def set_dual(self, value: float, i: int = 0) -> None:
        if self._has_constraints:
            self._constraints[i].dual = float(value)
