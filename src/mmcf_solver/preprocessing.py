"""Bound tightening and redundancy elimination for multicommodity flow problems.

This module squeezes the data of an MMCFProblem before the abstract
representation is built, which can shrink the model considerably:

- Remove arcs entering or leaving nodes that do not exist for a commodity
- Give zero capacity to every non-existent arc
- Drop shared-capacity constraints that can never be binding
- Drop individual-capacity constraints that can never be binding
- Detect commodities whose deficit, capacity or cost rows are verbatim copies

Every decision is taken against worst-case bounds on how much the data may
change afterwards, so the reduced model stays valid for all such changes.
Preprocessing works in place and may be applied only once per problem.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from .data import INF, compact_active
from .exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from .data import MMCFProblem

logger = logging.getLogger(__name__)


@dataclass
class PreprocessingResult:
    """Result of preprocessing a multicommodity flow problem.

    Attributes:
        problem: The preprocessed problem (the same object that was passed in)
        flow_bounds: Upper bound on the total flow of each commodity
        total_flow_bound: Sum of ``flow_bounds``
        pruned_arcs: Arcs removed for every commodity (zero shared capacity
                     that cannot grow)
        nonexistent_pairs: (commodity, arc) pairs newly declared non-existent
        redundant_shared_constraints: Shared-capacity constraints dropped
        redundant_individual_constraints: Individual-capacity constraints dropped
        duplicate_deficit_rows: Commodities whose deficit row is a copy
        duplicate_capacity_rows: Commodities whose capacity row is a copy
        duplicate_cost_rows: Commodities whose cost row is a copy
        preprocessing_time_ms: Time spent preprocessing in milliseconds
        optimizations: Dictionary mapping optimization names to counts
    """

    problem: MMCFProblem
    flow_bounds: np.ndarray = field(default_factory=lambda: np.zeros(0))
    total_flow_bound: float = 0.0
    pruned_arcs: int = 0
    nonexistent_pairs: int = 0
    redundant_shared_constraints: int = 0
    redundant_individual_constraints: int = 0
    duplicate_deficit_rows: int = 0
    duplicate_capacity_rows: int = 0
    duplicate_cost_rows: int = 0
    preprocessing_time_ms: float = 0.0
    optimizations: dict[str, int] = field(default_factory=dict)


def preprocess_problem(
    problem: MMCFProblem,
    shared_increase: float = 0.0,
    shared_decrease: float = 0.0,
    individual_increase: float = 0.0,
    individual_decrease: float = 0.0,
    deficit_change: float = 0.0,
    cost_decrease: float = 0.0,
) -> PreprocessingResult:
    """Tighten bounds and remove redundant constraints of a problem in place.

    The arguments bound how much the data may change after preprocessing. Tight
    bounds (0 is the best) let the preprocessor find more redundant coupling
    constraints, squeeze more individual capacities and remove more unused arcs.
    For instance ``individual_increase == 0`` lets it declare non-existent any
    arc with zero individual capacity.

    Args:
        problem: The problem to preprocess; modified in place
        shared_increase: Max future increase of shared capacities (may be inf)
        shared_decrease: Max future decrease of shared capacities (may be inf)
        individual_increase: Max future increase of individual capacities (may be inf)
        individual_decrease: Max future decrease of individual capacities (may be inf)
        deficit_change: Max future change, in absolute value, of any deficit;
                        must be finite
        cost_decrease: Max future decrease of any arc cost; must be finite

    Returns:
        PreprocessingResult with the flow bounds and reduction statistics

    Raises:
        InvalidArgumentError: If a bound is negative, if ``deficit_change`` or
            ``cost_decrease`` is not finite, or if an arc whose cost may become
            negative has unbounded capacity.

    Examples:
        >>> problem = build_problem(
        ...     n_nodes=2,
        ...     arcs=[{"tail": 0, "head": 1, "shared_capacity": 0.0}],
        ...     commodities=[{"deficits": [0.0, 0.0], "costs": [1.0]}],
        ... )
        >>> result = preprocess_problem(problem)
        >>> result.pruned_arcs
        1

    Note:
        Preprocessing may be applied only once: calling it again on the same
        problem is not supported and is not checked.

        A shared constraint is dropped when ``shared >= arc bound -
        shared_decrease``. With a nonzero finite ``shared_decrease`` this can
        drop a constraint that binds on the current data and raise the stored
        capacity to the arc bound, so the preprocessed problem may then admit
        flows the original one forbids.
    """
    _check_bounds(
        shared_increase=shared_increase,
        shared_decrease=shared_decrease,
        individual_increase=individual_increase,
        individual_decrease=individual_decrease,
        deficit_change=deficit_change,
        cost_decrease=cost_decrease,
    )

    start_time = time.time()
    result = PreprocessingResult(problem=problem)

    count = _remove_arcs_at_removed_nodes(problem)
    result.nonexistent_pairs += count
    result.optimizations["arcs_at_removed_nodes"] = count

    _zero_nonexistent_capacities(problem)

    bounds = estimate_flow_bounds(problem, cost_decrease, deficit_change)
    result.flow_bounds = bounds
    result.total_flow_bound = float(bounds.sum())

    active, pruned, redundant = _select_shared_constraints(
        problem, bounds, shared_increase, shared_decrease, individual_increase
    )
    problem.active_arcs = compact_active(active, problem.n_arcs)
    problem.n_shared_constraints = len(active)
    result.pruned_arcs = pruned
    result.nonexistent_pairs += pruned * problem.n_commodities
    result.redundant_shared_constraints = redundant
    result.optimizations["pruned_arcs"] = pruned
    result.optimizations["redundant_shared_constraints"] = redundant
    if pruned == problem.n_arcs:
        logger.warning("Preprocessing pruned every arc - problem is infeasible unless all deficits are 0")

    nonexistent, redundant = _select_individual_constraints(
        problem, bounds, set(active), shared_increase, individual_increase, individual_decrease
    )
    result.nonexistent_pairs += nonexistent
    result.redundant_individual_constraints = redundant
    result.optimizations["zero_capacity_arcs_removed"] = nonexistent
    result.optimizations["redundant_individual_constraints"] = redundant

    result.duplicate_deficit_rows, result.duplicate_capacity_rows, result.duplicate_cost_rows = (
        _detect_duplicate_rows(problem)
    )
    result.optimizations["duplicate_deficit_rows"] = result.duplicate_deficit_rows
    result.optimizations["duplicate_capacity_rows"] = result.duplicate_capacity_rows
    result.optimizations["duplicate_cost_rows"] = result.duplicate_cost_rows

    problem.preprocessed = True
    result.preprocessing_time_ms = (time.time() - start_time) * 1000

    logger.info(
        f"Preprocessing complete: {problem.n_shared_constraints}/{problem.n_arcs} shared "
        f"capacity constraints kept, {result.nonexistent_pairs} commodity arcs removed, "
        f"{result.redundant_individual_constraints} individual capacities relaxed "
        f"in {result.preprocessing_time_ms:.2f}ms"
    )

    return result


def _check_bounds(**bounds: float) -> None:
    for name, value in bounds.items():
        if math.isnan(value) or value < 0:
            raise InvalidArgumentError(
                f"Preprocessing bound '{name}' must be a non-negative number, got {value}."
            )
    if math.isinf(bounds["deficit_change"]):
        raise InvalidArgumentError(
            "deficit_change must be finite: it is used to give loose but finite bounds "
            "to the flow of every commodity."
        )
    if math.isinf(bounds["cost_decrease"]):
        raise InvalidArgumentError(
            "cost_decrease must be finite: with unbounded cost decrease no flow bound can be estimated."
        )


def _remove_arcs_at_removed_nodes(problem: MMCFProblem) -> int:
    """Declare non-existent every arc touching a node removed for its commodity.

    Returns:
        Number of (commodity, arc) pairs newly declared non-existent
    """
    removed = np.isposinf(problem.deficits)
    touching = removed[:, problem.start_nodes] | removed[:, problem.end_nodes]
    newly = touching & (problem.costs < INF)
    problem.costs[touching] = INF
    return int(newly.sum())


def _zero_nonexistent_capacities(problem: MMCFProblem) -> None:
    problem.capacities[problem.costs == INF] = 0.0


def estimate_flow_bounds(
    problem: MMCFProblem,
    cost_decrease: float = 0.0,
    deficit_change: float = 0.0,
) -> np.ndarray:
    """Compute a very rough upper bound on the flow each commodity can carry.

    The bound of commodity k is the supply out of its sources, plus the
    capacity of every arc whose cost could become negative (such arcs may
    carry flow around cycles), plus room for future deficit changes.

    Args:
        problem: Problem to analyze
        cost_decrease: Max future decrease of arc costs
        deficit_change: Max future change of node deficits

    Returns:
        Array with one bound per commodity

    Raises:
        InvalidArgumentError: If an arc that may have negative cost has
            unbounded capacity for some commodity.
    """
    bounds = np.zeros(problem.n_commodities)
    slack = ((problem.n_nodes + 1) // 2) * deficit_change

    for k in range(problem.n_commodities):
        deficits = problem.deficits[k]
        bound = float(-deficits[deficits < 0].sum())

        for arc in np.flatnonzero(problem.costs[k] < cost_decrease):
            arc_flow = min(problem.capacities[k, arc], problem.shared_capacities[arc])
            if math.isinf(arc_flow):
                raise InvalidArgumentError(
                    f"Arc {arc} of commodity {k} may have negative cost and has unbounded "
                    f"capacity: cannot bound the flow of the commodity.",
                    commodity=k,
                    arc=int(arc),
                )
            bound += arc_flow

        bounds[k] = bound + slack

    return bounds


def _select_shared_constraints(
    problem: MMCFProblem,
    bounds: np.ndarray,
    shared_increase: float,
    shared_decrease: float,
    individual_increase: float,
) -> tuple[list[int], int, int]:
    """Decide which shared-capacity constraints must be kept.

    Every shared capacity is also turned into a finite value.

    Returns:
        Tuple of (ascending active arcs, pruned arcs, redundant constraints)
    """
    total_bound = float(bounds.sum())
    shared = problem.shared_capacities
    active: list[int] = []
    pruned = 0
    redundant = 0

    for arc in range(problem.n_arcs):
        if shared_increase == 0 and shared[arc] == 0:
            # Zero capacity that can never grow: the arc does not exist at all.
            problem.costs[:, arc] = INF
            problem.capacities[:, arc] = 0.0
            pruned += 1
            logger.debug(f"Arc {arc} pruned: zero shared capacity")
            continue

        if math.isinf(shared_decrease):
            # Any capacity may vanish, so every declared constraint stays.
            if math.isinf(shared[arc]):
                shared[arc] = total_bound
                redundant += 1
            else:
                active.append(arc)
            continue

        if math.isinf(individual_increase):
            arc_bound = total_bound
        else:
            caps = problem.capacities[:, arc]
            arc_bound = float(
                np.where(
                    np.isinf(caps), bounds, np.minimum(bounds, caps + individual_increase)
                ).sum()
            )

        # Ties count as redundant: the individual capacities then do the job alone.
        if shared[arc] >= arc_bound - shared_decrease:
            shared[arc] = arc_bound
            redundant += 1
            logger.debug(f"Shared capacity of arc {arc} is redundant, clamped to {arc_bound}")
        else:
            active.append(arc)

    return active, pruned, redundant


def _select_individual_constraints(
    problem: MMCFProblem,
    bounds: np.ndarray,
    shared_active: set[int],
    shared_increase: float,
    individual_increase: float,
    individual_decrease: float,
) -> tuple[int, int]:
    """Squeeze individual capacities and rebuild the per-commodity active lists.

    The shared capacity of an arc may justify dropping an individual
    constraint only when the arc keeps its shared-capacity constraint: for the
    other arcs the stored shared capacity imposes nothing.

    Returns:
        Tuple of (pairs declared non-existent, redundant constraints)
    """
    nonexistent = 0
    redundant = 0
    costs = problem.costs
    caps = problem.capacities
    shared = problem.shared_capacities

    for k in range(problem.n_commodities):
        selected: list[int] = []
        for arc in range(problem.n_arcs):
            if costs[k, arc] == INF:
                continue

            if individual_increase == 0 and caps[k, arc] == 0:
                costs[k, arc] = INF
                nonexistent += 1
                continue

            if not math.isinf(individual_decrease):
                if caps[k, arc] >= bounds[k] + individual_decrease:
                    # There will never be that much flow of k in the graph.
                    caps[k, arc] = min(bounds[k], shared[arc])
                    redundant += 1
                    continue

                if (
                    not math.isinf(shared_increase)
                    and arc in shared_active
                    and caps[k, arc] >= shared[arc] + shared_increase + individual_decrease
                ):
                    caps[k, arc] = shared[arc]
                    redundant += 1
                    continue

            if math.isinf(caps[k, arc]):
                continue

            selected.append(arc)

        problem.active_arcs_by_commodity[k] = compact_active(selected, problem.n_arcs)

    return nonexistent, redundant


def _find_copies(
    rows: np.ndarray, reference: np.ndarray | None = None
) -> tuple[list[bool], list[int], int]:
    """Flag rows that are bit-for-bit equal to another row.

    Both members of a duplicated pair are flagged. ``source[k]`` is the lowest
    index holding the same row, or -1 when the row equals ``reference``.

    Returns:
        Tuple of (flags, sources, number of rows that are copies of another)
    """
    n_rows = rows.shape[0]
    source = list(range(n_rows))
    flags = [False] * n_rows
    copies = 0

    for k in range(n_rows):
        if reference is not None and np.array_equal(rows[k], reference):
            source[k] = -1
            flags[k] = True
            copies += 1
            continue
        for i in range(k):
            if source[i] == i and np.array_equal(rows[k], rows[i]):
                source[k] = i
                flags[k] = flags[i] = True
                copies += 1
                break

    return flags, source, copies


def _detect_duplicate_rows(problem: MMCFProblem) -> tuple[int, int, int]:
    """Record duplicated deficit, capacity and cost rows on the problem.

    When no row of a table duplicates another, both the flag and the source
    lists for that table are cleared.
    """
    counts = []
    for table, reference, flag_attr, source_attr in (
        (problem.deficits, None, "deficit_is_copy", "deficit_source"),
        (problem.capacities, problem.shared_capacities, "capacity_is_copy", "capacity_source"),
        (problem.costs, None, "cost_is_copy", "cost_source"),
    ):
        flags, source, copies = _find_copies(table, reference)
        if not any(flags):
            flags, source = [], []
        setattr(problem, flag_attr, flags)
        setattr(problem, source_attr, source)
        counts.append(copies)
    return counts[0], counts[1], counts[2]
