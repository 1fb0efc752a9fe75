"""Reference solver for the abstract representation of an MMCFBlock.

The block only describes variables and linear constraints; this module stacks
them into sparse matrices and hands them to HiGHS through SciPy. Pure LPs go
through ``scipy.optimize.linprog`` so that constraint duals are available;
models with integer variables (knapsack activation items) go through
``scipy.optimize.milp``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy.optimize import Bounds, linprog, milp
from scipy.optimize import LinearConstraint as RowBlock
from scipy.sparse import csr_matrix, vstack

from .data import Formulation, ModelOptions
from .exceptions import InfeasibleProblemError, UnboundedProblemError

if TYPE_CHECKING:
    from .abstract import LinearConstraint, Variable
    from .block import MMCFBlock

logger = logging.getLogger(__name__)

_STATUS = {0: "optimal", 1: "iteration_limit", 4: "numerical_error"}


@dataclass
class MMCFResult:
    """Output of solving an MMCFBlock.

    Attributes:
        objective: Optimal objective value of the assembled model.
        flows: ``(n_commodities, n_arcs)`` flows in physical units.
        status: 'optimal', 'iteration_limit' or 'numerical_error'.
        formulation: Decomposition that was solved.
        has_duals: True when constraint duals were written back (LP only).
        solve_time_ms: Wall time spent inside HiGHS, in milliseconds.
    """

    objective: float
    flows: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    status: str = "optimal"
    formulation: Formulation = Formulation.FLOW
    has_duals: bool = False
    solve_time_ms: float = 0.0


@dataclass
class _Assembly:
    variables: list[Variable]
    cost: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    integrality: np.ndarray
    rows: list[LinearConstraint]
    matrix: csr_matrix
    row_lower: np.ndarray
    row_upper: np.ndarray


def _assemble(block: MMCFBlock) -> _Assembly:
    variables = block.variables()
    column = {id(var): idx for idx, var in enumerate(variables)}
    n_vars = len(variables)

    cost = np.zeros(n_vars)
    for var, coeff in block.objective():
        cost[column[id(var)]] += coeff

    lower = np.array([var.lower for var in variables], dtype=float)
    upper = np.array([var.upper for var in variables], dtype=float)
    integrality = np.array([1 if var.integer else 0 for var in variables], dtype=np.int64)

    rows = block.constraints()
    data: list[float] = []
    row_idx: list[int] = []
    col_idx: list[int] = []
    for r, row in enumerate(rows):
        for var, coeff in row.coefficients:
            if coeff != 0.0:
                data.append(coeff)
                row_idx.append(r)
                col_idx.append(column[id(var)])
    matrix = csr_matrix((data, (row_idx, col_idx)), shape=(len(rows), n_vars))
    row_lower = np.array([row.lhs for row in rows], dtype=float)
    row_upper = np.array([row.rhs for row in rows], dtype=float)

    return _Assembly(
        variables=variables,
        cost=cost,
        lower=lower,
        upper=upper,
        integrality=integrality,
        rows=rows,
        matrix=matrix,
        row_lower=row_lower,
        row_upper=row_upper,
    )


def _check_status(status: int, message: str) -> None:
    if status == 2:
        raise InfeasibleProblemError(f"HiGHS reports the model is infeasible: {message}", status=status)
    if status == 3:
        raise UnboundedProblemError(f"HiGHS reports the model is unbounded: {message}", status=status)


def _solve_lp(model: _Assembly) -> tuple[np.ndarray, float, int]:
    eq = model.row_lower == model.row_upper
    has_upper = ~eq & np.isfinite(model.row_upper)
    has_lower = ~eq & np.isfinite(model.row_lower)

    upper_rows = np.flatnonzero(has_upper)
    lower_rows = np.flatnonzero(has_lower)
    eq_rows = np.flatnonzero(eq)
    ub_parts = [model.matrix[upper_rows], -model.matrix[lower_rows]]
    b_ub = np.concatenate([model.row_upper[has_upper], -model.row_lower[has_lower]])
    a_ub = None
    if b_ub.size:
        a_ub = vstack(ub_parts).tocsr()

    a_eq = model.matrix[eq_rows] if eq_rows.size else None
    b_eq = model.row_upper[eq_rows] if eq_rows.size else None

    bounds = [
        (None if math.isinf(lo) else lo, None if math.isinf(hi) else hi)
        for lo, hi in zip(model.lower, model.upper)
    ]
    res = linprog(
        model.cost,
        A_ub=a_ub,
        b_ub=b_ub if a_ub is not None else None,
        A_eq=a_eq,
        b_eq=b_eq,
        bounds=bounds,
        method="highs",
    )
    _check_status(res.status, res.message)
    if res.x is None:
        return np.zeros(len(model.variables)), math.nan, res.status

    # Marginals are d(objective)/d(rhs); a ranged row collects both sides.
    duals = np.zeros(len(model.rows))
    if a_ub is not None:
        marginals = np.asarray(res.ineqlin.marginals)
        n_upper = upper_rows.size
        duals[upper_rows] += marginals[:n_upper]
        duals[lower_rows] -= marginals[n_upper:]
    if a_eq is not None:
        duals[eq_rows] = np.asarray(res.eqlin.marginals)
    for row, dual in zip(model.rows, duals):
        row.dual = float(dual)

    return np.asarray(res.x), float(res.fun), res.status


def _solve_milp(model: _Assembly) -> tuple[np.ndarray, float, int]:
    constraints = []
    if model.rows:
        constraints.append(RowBlock(model.matrix, model.row_lower, model.row_upper))
    res = milp(
        model.cost,
        constraints=constraints,
        integrality=model.integrality,
        bounds=Bounds(model.lower, model.upper),
    )
    _check_status(res.status, res.message)
    if res.x is None:
        return np.zeros(len(model.variables)), math.nan, res.status
    return np.asarray(res.x), float(res.fun), res.status


def solve_mmcf(block: MMCFBlock, options: ModelOptions | None = None) -> MMCFResult:
    """Build (if needed) and solve the abstract representation of a block.

    Args:
        block: Block with a loaded (and possibly preprocessed) problem.
        options: Formulation and strong forcing choices; ignored for steps the
                 block has already built.

    Returns:
        MMCFResult with the objective and the flows in physical units.
        Primal values, and for pure LPs the duals, are written back to the
        block's variables and constraints, so every block accessor reflects
        the solution.

    Raises:
        InfeasibleProblemError: If the model has no feasible solution.
        UnboundedProblemError: If the objective is unbounded below.

    Examples:
        >>> block = MMCFBlock(problem)
        >>> result = solve_mmcf(block, ModelOptions(formulation=1))
        >>> result.flows[0, 0]
        5.0
    """
    block.generate_abstract_variables(options)
    block.generate_abstract_constraints(options)

    model = _assemble(block)
    integer = bool(model.integrality.any())
    logger.info(
        f"Solving {block.formulation.name.lower()} formulation: {len(model.variables)} variables, "
        f"{len(model.rows)} constraints ({'MILP' if integer else 'LP'})"
    )

    start_time = time.time()
    if integer:
        x, objective, status = _solve_milp(model)
    else:
        x, objective, status = _solve_lp(model)
    elapsed = (time.time() - start_time) * 1000

    for var, value in zip(model.variables, x):
        var.value = float(value)

    flows = np.array([block.get_flows(k) for k in range(block.n_commodities)])
    result = MMCFResult(
        objective=objective,
        flows=flows,
        status=_STATUS.get(status, "numerical_error"),
        formulation=block.formulation,
        has_duals=not integer,
        solve_time_ms=elapsed,
    )
    logger.info(f"Solve finished: status={result.status}, objective={objective:.6g} in {elapsed:.2f}ms")
    return result
