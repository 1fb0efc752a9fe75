"""Tests for utility functions."""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from mmcf_solver import build_problem, validate_solution  # noqa: E402


@pytest.fixture
def problem():
    # Two commodities over 0 -> 1 -> 2 with a direct arc 0 -> 2.
    return build_problem(
        n_nodes=3,
        arcs=[
            {"tail": 0, "head": 1, "shared_capacity": 4.0},
            {"tail": 1, "head": 2, "shared_capacity": 4.0},
            {"tail": 0, "head": 2, "shared_capacity": 2.0},
        ],
        commodities=[
            {"deficits": [-3.0, 0.0, 3.0], "costs": [1.0, 1.0, 1.0], "capacities": [3.0, 3.0, 3.0]},
            {"deficits": [0.0, -1.0, 1.0], "costs": [None, 1.0, None], "removed_nodes": [0]},
        ],
    )


def test_validate_solution_accepts_feasible_flows(problem):
    flows = np.array([[2.0, 2.0, 1.0], [0.0, 1.0, 0.0]])

    result = validate_solution(problem, flows)

    assert result.is_valid
    assert result.errors == []
    np.testing.assert_allclose(result.flow_balance, 0.0)


def test_validate_solution_reports_conservation(problem):
    flows = np.array([[2.0, 1.0, 1.0], [0.0, 1.0, 0.0]])

    result = validate_solution(problem, flows)

    assert not result.is_valid
    assert result.flow_balance[0, 1] == pytest.approx(1.0)
    assert any("conservation at node 1" in error for error in result.errors)


def test_validate_solution_reports_shared_capacity(problem):
    flows = np.array([[3.0, 3.0, 0.0], [0.0, 1.0, 0.0]])

    result = validate_solution(problem, flows)

    assert result.shared_capacity_violations == []

    flows = np.array([[0.0, 0.0, 3.0], [0.0, 1.0, 0.0]])
    result = validate_solution(problem, flows)

    assert result.shared_capacity_violations == [2]


def test_validate_solution_reports_unusable_arc(problem):
    flows = np.array([[2.0, 2.0, 1.0], [1.0, 2.0, 0.0]])

    result = validate_solution(problem, flows)

    assert (1, 0) in result.capacity_violations


def test_validate_solution_checks_shape(problem):
    with pytest.raises(ValueError, match="expected"):
        validate_solution(problem, np.zeros((1, 3)))
