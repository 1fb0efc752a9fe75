"""Single-commodity minimum-cost flow sub-model."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from .abstract import INF, LinearConstraint, SubModel, Variable

logger = logging.getLogger(__name__)


class MCFBlock(SubModel):
    """Minimum-cost flow problem of one commodity over the shared topology.

    Holds one flow variable per arc, bounded by the individual capacity of the
    commodity, and one flow-conservation equality per node:

        sum(inflow) - sum(outflow) = deficit

    so a supply node has a negative deficit. Arcs the commodity cannot use
    (infinite cost, or an endpoint removed for this commodity) keep their
    variable but have it fixed at zero, so arc indices stay aligned with the
    topology. The duals of the conservation rows are the node potentials.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.n_nodes = 0
        self.start_nodes = np.zeros(0, dtype=np.int64)
        self.end_nodes = np.zeros(0, dtype=np.int64)
        self.capacities = np.zeros(0)
        self.costs = np.zeros(0)
        self.deficits = np.zeros(0)
        self._removed_nodes = np.zeros(0, dtype=bool)

    def load(
        self,
        n_nodes: int,
        start_nodes: Sequence[int] | np.ndarray,
        end_nodes: Sequence[int] | np.ndarray,
        capacities: Sequence[float] | np.ndarray,
        costs: Sequence[float] | np.ndarray,
        deficits: Sequence[float] | np.ndarray,
    ) -> None:
        """Initialize the sub-model from one commodity's rows.

        The arrays are copied, so later changes to the caller's tables do not
        leak into an already loaded sub-model.
        """
        self.n_nodes = int(n_nodes)
        self.start_nodes = np.array(start_nodes, dtype=np.int64)
        self.end_nodes = np.array(end_nodes, dtype=np.int64)
        self.capacities = np.array(capacities, dtype=float)
        self.costs = np.array(costs, dtype=float)
        self.deficits = np.array(deficits, dtype=float)
        self._removed_nodes = np.isposinf(self.deficits)
        self._variables = []
        self._constraints = []
        self._has_variables = self._has_constraints = False

    @property
    def n_arcs(self) -> int:
        return int(self.start_nodes.shape[0])

    def arc_usable(self, arc: int) -> bool:
        removed = self._removed_nodes
        return bool(
            self.costs[arc] < INF
            and not removed[self.start_nodes[arc]]
            and not removed[self.end_nodes[arc]]
        )

    def generate_abstract_variables(self) -> None:
        if self._has_variables:
            return
        self._variables = []
        for arc in range(self.n_arcs):
            upper = float(self.capacities[arc]) if self.arc_usable(arc) else 0.0
            self._variables.append(Variable(name=f"{self.name}x[{arc}]", lower=0.0, upper=upper))
        self._has_variables = True

    def generate_abstract_constraints(self) -> None:
        if self._has_constraints:
            return
        self.generate_abstract_variables()

        rows: list[list[tuple[Variable, float]]] = [[] for _ in range(self.n_nodes)]
        for arc, var in enumerate(self._variables):
            rows[self.start_nodes[arc]].append((var, -1.0))
            rows[self.end_nodes[arc]].append((var, 1.0))

        self._constraints = []
        for node, coefficients in enumerate(rows):
            deficit = float(self.deficits[node])
            row = LinearConstraint(name=f"{self.name}flow[{node}]")
            row.set_coefficients(coefficients)
            row.set_both(0.0 if np.isposinf(deficit) else deficit)
            self._constraints.append(row)
        self._has_constraints = True
        logger.debug(f"Built {self.name or 'MCF'} sub-model: {self.n_arcs} arcs, {self.n_nodes} nodes")

    def objective(self) -> list[tuple[Variable, float]]:
        if not self._has_variables:
            return []
        return [
            (var, float(self.costs[arc]))
            for arc, var in enumerate(self._variables)
            if self.arc_usable(arc)
        ]

    def get_flows(self) -> np.ndarray:
        """Flow on every arc (zeros before variables exist)."""
        if not self._has_variables:
            return np.zeros(self.n_arcs)
        return np.array([var.value for var in self._variables])

    def get_potential(self, node: int) -> float:
        if not self._has_constraints:
            return 0.0
        return self._constraints[node].dual

    def set_potential(self, value: float, node: int) -> None:
        if self._has_constraints:
            self._constraints[node].dual = float(value)

    def get_dual(self, i: int = 0) -> float:
        return self.get_potential(i)

    def set_dual(self, value: float, i: int = 0) -> None:
        self.set_potential(value, i)
