"""Utility functions for validating multicommodity flow solutions."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .data import INF, MMCFProblem


@dataclass
class ValidationResult:
    """Results from validating a multicommodity flow solution.

    Attributes:
        is_valid: True if the flows satisfy all constraints.
        errors: List of validation error messages (empty if valid).
        flow_balance: ``(n_commodities, n_nodes)`` residual of the conservation
                      equations (inflow - outflow - deficit).
        capacity_violations: (commodity, arc) pairs exceeding the individual
                             capacity or using a non-existent arc.
        shared_capacity_violations: Arcs whose total flow exceeds the shared
                                    capacity.
    """

    is_valid: bool
    errors: list[str]
    flow_balance: np.ndarray
    capacity_violations: list[tuple[int, int]]
    shared_capacity_violations: list[int]


def validate_solution(
    problem: MMCFProblem,
    flows: np.ndarray,
    tolerance: float = 1e-6,
) -> ValidationResult:
    """Validate that flows satisfy every constraint of the original problem.

    Checks:
    - Flow conservation for each commodity and node (inflow - outflow = deficit)
    - Individual capacities, and zero flow on arcs a commodity cannot use
    - Shared capacities (sum over commodities <= shared capacity)
    - Non-negativity

    Nodes removed for a commodity must have zero net flow.

    Args:
        problem: Problem definition.
        flows: ``(n_commodities, n_arcs)`` flows to validate.
        tolerance: Numerical tolerance for constraint violations (default: 1e-6).

    Returns:
        ValidationResult with detailed information about any violations.
    """
    flows = np.asarray(flows, dtype=float)
    errors: list[str] = []
    capacity_violations: list[tuple[int, int]] = []
    shared_violations: list[int] = []

    if flows.shape != (problem.n_commodities, problem.n_arcs):
        raise ValueError(
            f"Flows have shape {flows.shape}, expected {(problem.n_commodities, problem.n_arcs)}."
        )

    deficits = np.where(np.isposinf(problem.deficits), 0.0, problem.deficits)
    balance = -deficits.copy()
    for k in range(problem.n_commodities):
        np.add.at(balance[k], problem.end_nodes, flows[k])
        np.subtract.at(balance[k], problem.start_nodes, flows[k])

    for k, node in zip(*np.nonzero(np.abs(balance) > tolerance)):
        errors.append(
            f"Commodity {k} violates conservation at node {node}: residual {balance[k, node]:.6g}"
        )

    for k, arc in zip(*np.nonzero(flows < -tolerance)):
        errors.append(f"Commodity {k} has negative flow {flows[k, arc]:.6g} on arc {arc}")

    over = flows > problem.capacities + tolerance
    unusable = (problem.costs == INF) & (np.abs(flows) > tolerance)
    for k, arc in zip(*np.nonzero(over | unusable)):
        capacity_violations.append((int(k), int(arc)))
        errors.append(f"Commodity {k} exceeds its capacity on arc {arc}: flow {flows[k, arc]:.6g}")

    totals = flows.sum(axis=0)
    for arc in np.flatnonzero(totals > problem.shared_capacities + tolerance):
        shared_violations.append(int(arc))
        errors.append(
            f"Arc {arc} exceeds its shared capacity: total flow {totals[arc]:.6g} > "
            f"{problem.shared_capacities[arc]:.6g}"
        )

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        flow_balance=balance,
        capacity_violations=capacity_violations,
        shared_capacity_violations=shared_violations,
    )
