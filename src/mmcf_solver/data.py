"""Core data structures for multicommodity minimum-cost flow problems."""

from __future__ import annotations

import copy
import math
import sys
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

import numpy as np

from .exceptions import InvalidProblemError, SolverConfigurationError, UnsupportedExtensionError

INF = math.inf
INF_INDEX = sys.maxsize  # Terminates every active-arc list that is not "all arcs".


def active_indices(active: Sequence[int], count: int) -> Iterator[int]:
    """Iterate over the indices named by an active list.

    An empty list means every index in ``range(count)`` is active; otherwise the
    list is ascending and stops at the first ``INF_INDEX``.
    """
    if not active:
        yield from range(count)
        return
    for idx in active:
        if idx == INF_INDEX:
            return
        yield idx


def compact_active(selected: Sequence[int], count: int) -> list[int]:
    """Turn an ascending selection into the stored active-list form."""
    if len(selected) >= count:
        return []
    return list(selected) + [INF_INDEX]


@dataclass
class MMCFProblem:
    """Encapsulates the data of a multicommodity minimum-cost flow problem.

    This is the canonical in-memory table set that loaders populate and that the
    preprocessor tightens in place. The builders of the abstract representation
    only ever read it.

    Attributes:
        n_nodes: Number of nodes; nodes are identified by ``0 .. n_nodes - 1``.
        start_nodes: Start node of every arc.
        end_nodes: End node of every arc.
        costs: ``(n_commodities, n_arcs)`` unit costs; ``inf`` marks an arc that
               does not exist for that commodity.
        capacities: ``(n_commodities, n_arcs)`` individual capacities; ``inf``
                    means unbounded.
        deficits: ``(n_commodities, n_nodes)`` node deficits (negative = supply,
                  positive = demand); ``inf`` marks a node removed for that
                  commodity.
        shared_capacities: ``(n_arcs,)`` capacity shared by all commodities;
                           ``inf`` means unbounded.
        fixed_costs: Optional ``(n_arcs,)`` arc-activation costs.
        extra_constraints: Legacy side-constraint description. Not supported;
                           any non-empty value is rejected by ``validate()``.
        active_arcs: Arcs whose shared-capacity constraint is kept. Empty means
                     all arcs; otherwise ascending and ``INF_INDEX``-terminated.
        n_shared_constraints: Number of active shared-capacity constraints.
        active_arcs_by_commodity: Same convention as ``active_arcs``, for the
                                  individual-capacity constraints of each commodity.

    Examples:
        >>> problem = build_problem(
        ...     n_nodes=2,
        ...     arcs=[{"tail": 0, "head": 1, "shared_capacity": 5.0}],
        ...     commodities=[{"deficits": [-5.0, 5.0], "costs": [1.0]}],
        ... )
        >>> problem.summary()
        'MMCFProblem with 1 commodities, 2 nodes and 1 arcs'
    """

    n_nodes: int
    start_nodes: np.ndarray
    end_nodes: np.ndarray
    costs: np.ndarray
    capacities: np.ndarray
    deficits: np.ndarray
    shared_capacities: np.ndarray
    fixed_costs: np.ndarray | None = None
    extra_constraints: Sequence[Any] | None = None
    active_arcs: list[int] = field(default_factory=list)
    n_shared_constraints: int = -1
    active_arcs_by_commodity: list[list[int]] = field(default_factory=list)
    deficit_is_copy: list[bool] | None = None
    capacity_is_copy: list[bool] | None = None
    cost_is_copy: list[bool] | None = None
    deficit_source: list[int] | None = None
    capacity_source: list[int] | None = None
    cost_source: list[int] | None = None
    preprocessed: bool = False

    def __post_init__(self) -> None:
        self.start_nodes = np.asarray(self.start_nodes, dtype=np.int64).reshape(-1)
        self.end_nodes = np.asarray(self.end_nodes, dtype=np.int64).reshape(-1)
        self.costs = np.array(self.costs, dtype=float, ndmin=2)
        self.capacities = np.array(self.capacities, dtype=float, ndmin=2)
        self.deficits = np.array(self.deficits, dtype=float, ndmin=2)
        self.shared_capacities = np.array(self.shared_capacities, dtype=float).reshape(-1)
        if self.fixed_costs is not None:
            self.fixed_costs = np.array(self.fixed_costs, dtype=float).reshape(-1)
        self.validate()
        if self.n_shared_constraints < 0:
            self.n_shared_constraints = self.n_arcs
        if not self.active_arcs_by_commodity:
            self._initialize_individual_active_sets()

    @property
    def n_arcs(self) -> int:
        return int(self.start_nodes.shape[0])

    @property
    def n_commodities(self) -> int:
        return int(self.costs.shape[0])

    def validate(self) -> None:
        if self.n_nodes <= 1:
            raise InvalidProblemError(
                f"Wrong node number {self.n_nodes}: a multicommodity flow problem needs "
                f"at least two nodes."
            )
        if self.n_arcs <= 0:
            raise InvalidProblemError("Wrong arc number: the problem must have at least one arc.")
        if self.costs.shape[0] <= 0:
            raise InvalidProblemError(
                "Wrong commodity number: the problem must have at least one commodity."
            )
        if self.end_nodes.shape != self.start_nodes.shape:
            raise InvalidProblemError(
                f"Topology mismatch: {self.start_nodes.shape[0]} start nodes but "
                f"{self.end_nodes.shape[0]} end nodes."
            )
        for arc, (tail, head) in enumerate(zip(self.start_nodes, self.end_nodes)):
            if not (0 <= tail < self.n_nodes and 0 <= head < self.n_nodes):
                raise InvalidProblemError(
                    f"Arc {arc} ({tail} -> {head}) references a node outside 0..{self.n_nodes - 1}."
                )
            if tail == head:
                raise InvalidProblemError(
                    f"Self-loop detected on arc {arc} (node {tail} -> node {head}). "
                    f"Self-loops are not supported."
                )
        expected = {
            "costs": (self.costs, (self.n_commodities, self.n_arcs)),
            "capacities": (self.capacities, (self.n_commodities, self.n_arcs)),
            "deficits": (self.deficits, (self.n_commodities, self.n_nodes)),
        }
        for name, (table, shape) in expected.items():
            if table.shape != shape:
                raise InvalidProblemError(
                    f"Table '{name}' has shape {table.shape}, expected {shape}."
                )
        if self.shared_capacities.shape != (self.n_arcs,):
            raise InvalidProblemError(
                f"Shared capacities have {self.shared_capacities.shape[0]} entries, "
                f"expected {self.n_arcs}."
            )
        if self.fixed_costs is not None and self.fixed_costs.shape != (self.n_arcs,):
            raise InvalidProblemError(
                f"Fixed costs have {self.fixed_costs.shape[0]} entries, expected {self.n_arcs}."
            )
        if np.any(self.capacities < 0) or np.any(self.shared_capacities < 0):
            raise InvalidProblemError("Capacities must be non-negative.")
        if np.any(np.isnan(self.costs)) or np.any(np.isnan(self.deficits)):
            raise InvalidProblemError("Costs and deficits must not contain NaN values.")
        if self.extra_constraints:
            raise UnsupportedExtensionError(
                f"{len(self.extra_constraints)} extra side constraints were supplied, but the "
                f"extra constraints extension is not implemented."
            )

    def _initialize_individual_active_sets(self) -> None:
        # An individual capacity constraint exists only where both cost and capacity are finite.
        finite = np.isfinite(self.costs) & np.isfinite(self.capacities)
        self.active_arcs_by_commodity = [
            compact_active(np.flatnonzero(row).tolist(), self.n_arcs) for row in finite
        ]

    @property
    def has_fixed_costs(self) -> bool:
        """True when at least one arc carries a nonzero fixed cost."""
        return self.fixed_costs is not None and bool(np.any(self.fixed_costs != 0))

    def arc_exists(self, commodity: int, arc: int) -> bool:
        return bool(self.costs[commodity, arc] < INF)

    def active_shared_arcs(self) -> list[int]:
        """Arcs that carry a shared-capacity constraint, as a plain list."""
        return list(active_indices(self.active_arcs, self.n_arcs))

    def active_individual_arcs(self, commodity: int) -> list[int]:
        return list(active_indices(self.active_arcs_by_commodity[commodity], self.n_arcs))

    def total_supply(self, commodity: int | None = None) -> float:
        """Total supply (sum of negative deficits) of one or all commodities."""
        rows = self.deficits if commodity is None else self.deficits[commodity : commodity + 1]
        finite = np.where(np.isfinite(rows), rows, 0.0)
        return float(-finite[finite < 0].sum())

    def set_fixed_costs_from_costs(self, scale: float) -> None:
        """Derive fixed costs as ``scale`` times the mean finite ``cost * capacity`` per arc.

        A zero-cost commodity contributes nothing. An arc where some commodity
        has nonzero cost and unbounded capacity gets an infinite fixed cost.
        """
        usable = np.isfinite(self.costs) & (self.costs != 0)
        products = np.where(usable, self.costs, 0.0) * np.where(usable, self.capacities, 1.0)
        self.fixed_costs = scale * products.sum(axis=0) / self.n_commodities

    def summary(self) -> str:
        return (
            f"MMCFProblem with {self.n_commodities} commodities, {self.n_nodes} nodes "
            f"and {self.n_arcs} arcs"
        )

    def copy(self) -> MMCFProblem:
        return copy.deepcopy(self)


class Formulation(IntEnum):
    """Decomposition used for the abstract representation."""

    FLOW = 0
    KNAPSACK = 1

    @classmethod
    def from_value(cls, value: int) -> Formulation:
        # Every nonzero selector means the knapsack decomposition.
        return cls.FLOW if int(value) == 0 else cls.KNAPSACK


@dataclass
class ModelOptions:
    """Configuration options for building the abstract representation.

    Attributes:
        formulation: Which decomposition to build.
                    - 0 (default): flow decomposition, one min-cost flow
                      sub-model per commodity plus shared-capacity constraints
                    - any nonzero value: knapsack decomposition, one binary
                      knapsack sub-model per arc plus flow-conservation constraints
        strong_forcing: Add one "commodity selection <= arc activation"
                        inequality per (commodity, arc) in the knapsack
                        decomposition (default: False). Only meaningful when
                        fixed costs create activation items.
        tolerance: Numerical tolerance used when checking solutions (default: 1e-6).

    Examples:
        >>> # Default flow decomposition
        >>> options = ModelOptions()

        >>> # Knapsack decomposition with strong forcing constraints
        >>> options = ModelOptions(formulation=1, strong_forcing=True)
    """

    formulation: int = 0
    strong_forcing: bool = False
    tolerance: float = 1e-6

    def __post_init__(self) -> None:
        if isinstance(self.formulation, bool) or not isinstance(self.formulation, (int, np.integer)):
            raise SolverConfigurationError(
                f"formulation must be an integer, got {self.formulation!r}."
            )
        if self.tolerance <= 0:
            raise SolverConfigurationError(
                f"Tolerance must be positive, got {self.tolerance}. "
                f"Tolerance controls numerical precision for feasibility checks."
            )


@dataclass
class BlockConfig:
    """Block-level default configuration.

    Consulted when ``generate_abstract_variables()`` or
    ``generate_abstract_constraints()`` is called without an explicit
    configuration.

    Attributes:
        static_variables: Formulation selector (0 = flow, nonzero = knapsack).
        static_constraints: Nonzero enables strong forcing constraints.
    """

    static_variables: int | None = None
    static_constraints: int | None = None


def _row(values: Any, length: int, default: float, name: str, none_value: float) -> list[float]:
    if values is None:
        return [default] * length
    if isinstance(values, Mapping):
        row = [default] * length
        for idx, value in values.items():
            idx = int(idx)
            if not 0 <= idx < length:
                raise InvalidProblemError(f"Index {idx} in '{name}' is outside 0..{length - 1}.")
            row[idx] = none_value if value is None else float(value)
        return row
    row = [none_value if value is None else float(value) for value in values]
    if len(row) != length:
        raise InvalidProblemError(f"'{name}' has {len(row)} entries, expected {length}.")
    return row


def build_problem(
    n_nodes: int,
    arcs: Iterable[Mapping[str, Any]],
    commodities: Iterable[Mapping[str, Any]],
    extra_constraints: Sequence[Any] | None = None,
) -> MMCFProblem:
    """Factory helper used by loaders to assemble an MMCFProblem.

    Args:
        n_nodes: Number of nodes.
        arcs: One mapping per arc with ``tail`` and ``head`` (node indices),
              optional ``shared_capacity`` (None = unbounded, the default) and
              optional ``fixed_cost``.
        commodities: One mapping per commodity with ``deficits`` (list or
                     {node: value} mapping, default 0), ``costs`` (list or
                     mapping; None marks an arc the commodity cannot use),
                     ``capacities`` (None = unbounded, the default) and
                     ``removed_nodes`` (nodes that do not exist for it).
        extra_constraints: Legacy side constraints; not supported.
    """
    if extra_constraints:
        raise UnsupportedExtensionError(
            "Extra side constraints are not managed: the extension has no implementation."
        )
    arc_list = list(arcs)
    n_arcs = len(arc_list)
    start_nodes = []
    end_nodes = []
    shared = []
    fixed = []
    any_fixed = False
    for arc in arc_list:
        if "tail" not in arc or "head" not in arc:
            raise InvalidProblemError(
                f"Invalid arc specification: {arc}. Each arc must have 'tail' and 'head' fields."
            )
        start_nodes.append(int(arc["tail"]))
        end_nodes.append(int(arc["head"]))
        cap = arc.get("shared_capacity")
        shared.append(INF if cap is None else float(cap))
        if arc.get("fixed_cost") is not None:
            any_fixed = True
        fixed.append(float(arc.get("fixed_cost") or 0.0))

    costs = []
    capacities = []
    deficits = []
    for commodity in commodities:
        costs.append(_row(commodity.get("costs"), n_arcs, 0.0, "costs", INF))
        capacities.append(_row(commodity.get("capacities"), n_arcs, INF, "capacities", INF))
        deficit_row = _row(commodity.get("deficits"), n_nodes, 0.0, "deficits", INF)
        for node in commodity.get("removed_nodes", ()):
            deficit_row[int(node)] = INF
        deficits.append(deficit_row)

    if not costs:
        raise InvalidProblemError(
            "Wrong commodity number: the problem must have at least one commodity."
        )

    return MMCFProblem(
        n_nodes=int(n_nodes),
        start_nodes=np.array(start_nodes, dtype=np.int64),
        end_nodes=np.array(end_nodes, dtype=np.int64),
        costs=np.array(costs, dtype=float).reshape(len(costs), n_arcs),
        capacities=np.array(capacities, dtype=float).reshape(len(costs), n_arcs),
        deficits=np.array(deficits, dtype=float).reshape(len(costs), n_nodes),
        shared_capacities=np.array(shared, dtype=float),
        fixed_costs=np.array(fixed, dtype=float) if any_fixed else None,
    )
