"""Flow and knapsack decompositions of a multicommodity flow problem.

Both builders read the (possibly preprocessed) data store and produce a set of
independent sub-models plus the parent-level constraints that couple them:

- Flow decomposition: one min-cost flow sub-model per commodity; the parent
  holds one shared-capacity inequality per active arc.
- Knapsack decomposition: one binary knapsack sub-model per arc whose items
  are the commodities (plus an activation item when fixed costs exist); the
  parent holds one flow-conservation equality per (commodity, node) and,
  optionally, the strong forcing inequalities.

The two describe the same feasible flows, so a solver obtains the same
optimal objective from either one.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

import numpy as np

from .abstract import LinearConstraint, SubModel, Variable
from .data import INF, Formulation
from .exceptions import ModelLogicError
from .flow_block import MCFBlock
from .knapsack_block import BinaryKnapsackBlock
from .preprocessing import estimate_flow_bounds

if TYPE_CHECKING:
    from .data import MMCFProblem

logger = logging.getLogger(__name__)


class FormulationBuilder(ABC):
    """Capability interface shared by the two decompositions.

    A builder is created once per block, after the formulation has been
    selected, and is never swapped for another one until the block is reset.

    Attributes:
        problem: Data store the builder reads.
        sub_models: Sub-models owned by the parent, with disjoint variables
                    and constraints.
    """

    formulation: ClassVar[Formulation]

    def __init__(self, problem: MMCFProblem) -> None:
        self.problem = problem
        self.sub_models: list[SubModel] = []

    @abstractmethod
    def build(self) -> None:
        """Create the sub-models and their variables."""

    @abstractmethod
    def generate_constraints(self, strong_forcing: bool = False) -> None:
        """Generate the sub-model constraints, then the parent coupling constraints."""

    @abstractmethod
    def parent_constraints(self) -> list[LinearConstraint]:
        """Every parent-level constraint, in a stable order."""

    @abstractmethod
    def get_flow(self, commodity: int, arc: int) -> float:
        """Flow of ``commodity`` on ``arc`` in physical units."""

    @abstractmethod
    def get_flow_variable(self, commodity: int, arc: int) -> Variable | None: ...

    @abstractmethod
    def get_dual(self, arc: int) -> float:
        """Dual value attached to the shared capacity of ``arc``."""

    @abstractmethod
    def set_dual(self, value: float, arc: int) -> None: ...

    @abstractmethod
    def get_potential(self, commodity: int, node: int) -> float: ...

    @abstractmethod
    def set_potential(self, value: float, commodity: int, node: int) -> None: ...

    def discard_constraints(self) -> None:
        """Drop the constraints of the parent and of every sub-model."""
        self._clear_parent_constraints()
        for sub in self.sub_models:
            sub.discard_constraints()

    @abstractmethod
    def _clear_parent_constraints(self) -> None: ...

    def objective(self) -> list[tuple[Variable, float]]:
        terms: list[tuple[Variable, float]] = []
        for sub in self.sub_models:
            terms.extend(sub.objective())
        return terms

    def variables(self) -> list[Variable]:
        return [var for sub in self.sub_models for var in sub.variables()]

    def constraints(self) -> list[LinearConstraint]:
        """Sub-model constraints followed by the parent-level ones."""
        rows = [row for sub in self.sub_models for row in sub.constraints()]
        rows.extend(self.parent_constraints())
        return rows

    def get_flows(self, commodity: int) -> np.ndarray:
        return np.array([self.get_flow(commodity, arc) for arc in range(self.problem.n_arcs)])


class FlowFormulation(FormulationBuilder):
    """One single-commodity min-cost flow sub-model per commodity."""

    formulation = Formulation.FLOW

    def __init__(self, problem: MMCFProblem) -> None:
        super().__init__(problem)
        self.shared_constraints: list[LinearConstraint] = []
        self._row_of_arc: dict[int, int] = {}

    def build(self) -> None:
        problem = self.problem
        for k in range(problem.n_commodities):
            block = MCFBlock(name=f"k{k}.")
            block.load(
                problem.n_nodes,
                problem.start_nodes,
                problem.end_nodes,
                problem.capacities[k],
                problem.costs[k],
                problem.deficits[k],
            )
            block.generate_abstract_variables()
            self.sub_models.append(block)
        logger.info(f"Flow decomposition: built {len(self.sub_models)} commodity sub-models")

    def generate_constraints(self, strong_forcing: bool = False) -> None:
        if strong_forcing:
            logger.debug("Strong forcing constraints do not apply to the flow decomposition")
        for sub in self.sub_models:
            sub.generate_abstract_constraints()

        problem = self.problem
        rows: list[LinearConstraint] = []
        row_of_arc: dict[int, int] = {}
        for arc in problem.active_shared_arcs():
            bound = float(problem.shared_capacities[arc])
            if math.isinf(bound):
                raise ModelLogicError(
                    f"Shared-capacity constraint of arc {arc} requires a finite bound, got {bound}."
                )
            row = LinearConstraint(name=f"shared[{arc}]")
            row.set_coefficients((sub.get_variable(arc), 1.0) for sub in self.sub_models)
            row.set_lhs(-INF)
            row.set_rhs(bound)
            row_of_arc[arc] = len(rows)
            rows.append(row)

        self.shared_constraints = rows
        self._row_of_arc = row_of_arc
        logger.info(f"Flow decomposition: {len(rows)} shared-capacity constraints")

    def parent_constraints(self) -> list[LinearConstraint]:
        return list(self.shared_constraints)

    def _clear_parent_constraints(self) -> None:
        self.shared_constraints = []
        self._row_of_arc = {}

    def shared_constraint(self, arc: int) -> LinearConstraint | None:
        row = self._row_of_arc.get(arc)
        return None if row is None else self.shared_constraints[row]

    def get_flow(self, commodity: int, arc: int) -> float:
        return self.sub_models[commodity].get_x(arc)

    def get_flow_variable(self, commodity: int, arc: int) -> Variable | None:
        return self.sub_models[commodity].get_variable(arc)

    def get_dual(self, arc: int) -> float:
        row = self.shared_constraint(arc)
        return 0.0 if row is None else row.dual

    def set_dual(self, value: float, arc: int) -> None:
        row = self.shared_constraint(arc)
        if row is not None:
            row.dual = float(value)

    def get_potential(self, commodity: int, node: int) -> float:
        return self.sub_models[commodity].get_potential(node)

    def set_potential(self, value: float, commodity: int, node: int) -> None:
        self.sub_models[commodity].set_potential(value, node)


def usable_arcs(problem: MMCFProblem) -> np.ndarray:
    """Boolean ``(n_commodities, n_arcs)`` mask of arcs each commodity may use."""
    removed = np.isposinf(problem.deficits)
    return (
        (problem.costs < INF)
        & ~removed[:, problem.start_nodes]
        & ~removed[:, problem.end_nodes]
    )


def effective_capacities(problem: MMCFProblem, usable: np.ndarray) -> np.ndarray:
    """Finite per-commodity capacities used to scale knapsack selections.

    The individual capacity is capped by the shared capacity and, where both
    are unbounded, by the flow bound of the commodity. Some optimal solution
    never exceeds that bound on any arc, so the cap loses no optimum. Unusable
    arcs get zero capacity.
    """
    caps = np.minimum(problem.capacities, problem.shared_capacities[np.newaxis, :])
    caps = np.where(usable, caps, 0.0)
    if np.isinf(caps).any():
        bounds = estimate_flow_bounds(problem)
        caps = np.minimum(caps, bounds[:, np.newaxis])
    return caps


def knapsack_penalty(problem: MMCFProblem, usable: np.ndarray, capacities: np.ndarray) -> float:
    """Profit given to a commodity item on an arc it cannot use.

    With every selection in [0, 1], the objective of any knapsack solution is
    at most, in absolute value, the sum of ``|cost| * capacity`` over usable
    items plus the sum of ``|fixed cost|``. One more than that sum strictly
    dominates any combination of admissible items, so a minimizer never pays
    it. The forbidden item also has zero weight and zero conservation
    coefficient, so its selection never moves flow.
    """
    total = float(np.abs(np.where(usable, problem.costs, 0.0) * capacities).sum())
    if problem.fixed_costs is not None:
        total += float(np.abs(problem.fixed_costs).sum())
    return 1.0 + total


class KnapsackFormulation(FormulationBuilder):
    """One binary knapsack sub-model per arc.

    Item k of the knapsack of arc j is the fraction of the effective capacity
    of commodity k used on j: its weight is that capacity and its profit is
    ``cost * capacity``. When fixed costs exist, a binary activation item with
    profit equal to the fixed cost and weight ``-shared capacity`` is added and
    the knapsack bound becomes zero, so capacity is available only on
    activated arcs.
    """

    formulation = Formulation.KNAPSACK

    def __init__(self, problem: MMCFProblem) -> None:
        super().__init__(problem)
        self.capacities = np.zeros((problem.n_commodities, problem.n_arcs))
        self.shared_capacities = np.zeros(problem.n_arcs)
        self.penalty = 0.0
        self.has_activation = False
        self.flow_constraints: list[list[LinearConstraint]] = []
        self.strong_forcing_constraints: list[list[LinearConstraint]] = []

    def build(self) -> None:
        problem = self.problem
        n_comm = problem.n_commodities
        usable = usable_arcs(problem)
        self.capacities = effective_capacities(problem, usable)
        self.shared_capacities = np.minimum(problem.shared_capacities, self.capacities.sum(axis=0))
        self.penalty = knapsack_penalty(problem, usable, self.capacities)
        self.has_activation = problem.has_fixed_costs

        integrality = [False] * n_comm
        if self.has_activation:
            integrality.append(True)

        for arc in range(problem.n_arcs):
            weights = self.capacities[:, arc].copy()
            profits = np.where(
                usable[:, arc],
                np.where(usable[:, arc], problem.costs[:, arc], 0.0) * weights,
                self.penalty,
            )
            if self.has_activation:
                weights = np.append(weights, -self.shared_capacities[arc])
                profits = np.append(profits, problem.fixed_costs[arc])
                bound = 0.0
            else:
                bound = float(self.shared_capacities[arc])

            block = BinaryKnapsackBlock(name=f"a{arc}.")
            block.load(bound, weights, profits, integrality)
            block.generate_abstract_variables()
            self.sub_models.append(block)

        logger.info(
            f"Knapsack decomposition: built {len(self.sub_models)} arc sub-models "
            f"(activation items: {self.has_activation}, penalty: {self.penalty:.6g})"
        )

    def generate_constraints(self, strong_forcing: bool = False) -> None:
        for sub in self.sub_models:
            sub.generate_abstract_constraints()

        problem = self.problem
        removed = np.isposinf(problem.deficits)
        flow_rows: list[list[LinearConstraint]] = []
        for k in range(problem.n_commodities):
            coefficients: list[list[tuple[Variable, float]]] = [[] for _ in range(problem.n_nodes)]
            for arc, sub in enumerate(self.sub_models):
                var = sub.get_variable(k)
                cap = float(self.capacities[k, arc])
                coefficients[problem.start_nodes[arc]].append((var, -cap))
                coefficients[problem.end_nodes[arc]].append((var, cap))

            rows = []
            for node in range(problem.n_nodes):
                row = LinearConstraint(name=f"flow[{k},{node}]")
                row.set_coefficients(coefficients[node])
                row.set_both(0.0 if removed[k, node] else float(problem.deficits[k, node]))
                rows.append(row)
            flow_rows.append(rows)
        self.flow_constraints = flow_rows

        forcing_rows: list[list[LinearConstraint]] = []
        if strong_forcing and not self.has_activation:
            logger.warning("Strong forcing requested but no arc has a fixed cost; skipping it")
        elif strong_forcing:
            n_comm = problem.n_commodities
            for k in range(n_comm):
                rows = []
                for arc, sub in enumerate(self.sub_models):
                    row = LinearConstraint(name=f"forcing[{k},{arc}]")
                    row.set_coefficients(
                        [(sub.get_variable(k), 1.0), (sub.get_variable(n_comm), -1.0)]
                    )
                    row.set_lhs(-INF)
                    row.set_rhs(0.0)
                    rows.append(row)
                forcing_rows.append(rows)
        self.strong_forcing_constraints = forcing_rows

        logger.info(
            f"Knapsack decomposition: {problem.n_commodities * problem.n_nodes} flow "
            f"conservation constraints, "
            f"{sum(len(rows) for rows in forcing_rows)} strong forcing constraints"
        )

    def parent_constraints(self) -> list[LinearConstraint]:
        rows = [row for group in self.flow_constraints for row in group]
        rows.extend(row for group in self.strong_forcing_constraints for row in group)
        return rows

    def _clear_parent_constraints(self) -> None:
        self.flow_constraints = []
        self.strong_forcing_constraints = []

    def get_flow(self, commodity: int, arc: int) -> float:
        # Selections live in [0, 1]; scale back to flow units.
        return float(self.capacities[commodity, arc]) * self.sub_models[arc].get_x(commodity)

    def get_activation(self, arc: int) -> float:
        if not self.has_activation:
            return 0.0
        return self.sub_models[arc].get_x(self.problem.n_commodities)

    def get_flow_variable(self, commodity: int, arc: int) -> Variable | None:
        return self.sub_models[arc].get_variable(commodity)

    def get_dual(self, arc: int) -> float:
        return self.sub_models[arc].get_dual()

    def set_dual(self, value: float, arc: int) -> None:
        self.sub_models[arc].set_dual(value)

    def get_potential(self, commodity: int, node: int) -> float:
        if not self.flow_constraints:
            return 0.0
        return self.flow_constraints[commodity][node].dual

    def set_potential(self, value: float, commodity: int, node: int) -> None:
        if self.flow_constraints:
            self.flow_constraints[commodity][node].dual = float(value)


class FormulationRegistry:
    """Explicit map from formulation identifiers to builder classes.

    Nothing registers itself on import: call
    ``register_builtin_formulations()`` (or ``default_registry()``) to fill it.
    """

    def __init__(self) -> None:
        self._builders: dict[Formulation, type[FormulationBuilder]] = {}

    def register(self, builder: type[FormulationBuilder]) -> None:
        self._builders[builder.formulation] = builder

    def __contains__(self, formulation: object) -> bool:
        return formulation in self._builders

    def create(self, formulation: Formulation, problem: MMCFProblem) -> FormulationBuilder:
        builder = self._builders.get(formulation)
        if builder is None:
            raise ModelLogicError(
                f"No builder registered for formulation {formulation!r}. "
                f"Registered: {sorted(f.name for f in self._builders)}."
            )
        return builder(problem)


def register_builtin_formulations(registry: FormulationRegistry) -> FormulationRegistry:
    registry.register(FlowFormulation)
    registry.register(KnapsackFormulation)
    return registry


def default_registry() -> FormulationRegistry:
    return register_builtin_formulations(FormulationRegistry())
