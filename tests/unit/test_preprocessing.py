"""Tests for problem preprocessing functionality."""

import logging
import math

import numpy as np
import pytest

from mmcf_solver import INF, INF_INDEX, build_problem, estimate_flow_bounds, preprocess_problem
from mmcf_solver.exceptions import InvalidArgumentError


def _parallel_arcs(shared, commodities):
    arcs = [{"tail": 0, "head": 1, "shared_capacity": cap} for cap in shared]
    return build_problem(n_nodes=2, arcs=arcs, commodities=commodities)


class TestArcRemoval:
    """Test removal of arcs that can never carry flow."""

    def test_zero_shared_capacity_prunes_arc(self):
        """An arc with zero shared capacity that cannot grow disappears for everyone."""
        problem = _parallel_arcs(
            [0.0, 10.0],
            [{"deficits": [-3.0, 3.0], "costs": [1.0, 1.0]}, {"deficits": [-1.0, 1.0], "costs": [2.0, 2.0]}],
        )

        result = preprocess_problem(problem)

        assert problem.costs[:, 0].tolist() == [INF, INF]
        assert problem.capacities[:, 0].tolist() == [0.0, 0.0]
        assert 0 not in problem.active_shared_arcs()
        assert result.pruned_arcs == 1
        assert result.nonexistent_pairs == 2
        assert problem.preprocessed

    def test_zero_shared_capacity_kept_when_it_may_grow(self):
        problem = _parallel_arcs([0.0], [{"deficits": [-3.0, 3.0], "costs": [1.0]}])

        result = preprocess_problem(problem, shared_increase=1.0)

        assert result.pruned_arcs == 0
        assert problem.costs[0, 0] == 1.0
        assert problem.active_shared_arcs() == [0]

    def test_pruning_every_arc_logs_warning(self, caplog):
        problem = _parallel_arcs([0.0], [{"deficits": [0.0, 0.0], "costs": [1.0]}])

        with caplog.at_level(logging.WARNING, logger="mmcf_solver.preprocessing"):
            result = preprocess_problem(problem)

        assert result.pruned_arcs == 1
        assert "pruned every arc" in caplog.text

    def test_arcs_at_removed_nodes_become_nonexistent(self):
        problem = build_problem(
            n_nodes=3,
            arcs=[{"tail": 0, "head": 1}, {"tail": 1, "head": 2}],
            commodities=[{"deficits": [-1.0, 1.0, 0.0], "costs": [1.0, 1.0], "removed_nodes": [2]}],
        )

        result = preprocess_problem(problem)

        assert problem.costs[0, 1] == INF
        assert problem.capacities[0, 1] == 0.0
        assert result.optimizations["arcs_at_removed_nodes"] == 1
        assert 1 not in problem.active_individual_arcs(0)

    def test_zero_individual_capacity_becomes_nonexistent(self):
        problem = _parallel_arcs(
            [10.0, 10.0],
            [{"deficits": [-3.0, 3.0], "costs": [1.0, 1.0], "capacities": [0.0, 5.0]}],
        )

        result = preprocess_problem(problem)

        assert problem.costs[0, 0] == INF
        assert result.optimizations["zero_capacity_arcs_removed"] == 1

    def test_zero_individual_capacity_kept_when_it_may_grow(self):
        problem = _parallel_arcs(
            [10.0],
            [{"deficits": [-3.0, 3.0], "costs": [1.0], "capacities": [0.0]}],
        )

        preprocess_problem(problem, individual_increase=2.0)

        assert problem.costs[0, 0] == 1.0
        assert problem.active_individual_arcs(0) == [0]


class TestFlowBounds:
    """Test the rough per-commodity flow bounds."""

    def test_bound_is_total_supply(self):
        problem = _parallel_arcs([INF], [{"deficits": [-4.0, 4.0], "costs": [1.0]}])

        np.testing.assert_allclose(estimate_flow_bounds(problem), [4.0])

    def test_negative_cost_arcs_and_deficit_change_widen_bound(self):
        problem = build_problem(
            n_nodes=3,
            arcs=[{"tail": 0, "head": 1}, {"tail": 1, "head": 2}],
            commodities=[
                {"deficits": [-5.0, 0.0, 5.0], "costs": [-1.0, 2.0], "capacities": [4.0, None]}
            ],
        )

        bounds = estimate_flow_bounds(problem, cost_decrease=0.0, deficit_change=1.0)

        # 5 supply + 4 on the negative-cost arc + ((3 + 1) // 2) * 1.
        np.testing.assert_allclose(bounds, [11.0])

    def test_cost_decrease_counts_arcs_that_may_turn_negative(self):
        problem = build_problem(
            n_nodes=2,
            arcs=[{"tail": 0, "head": 1, "shared_capacity": 3.0}],
            commodities=[{"deficits": [-1.0, 1.0], "costs": [2.0]}],
        )

        np.testing.assert_allclose(estimate_flow_bounds(problem, cost_decrease=2.5), [4.0])

    def test_unbounded_negative_cost_arc_is_rejected(self):
        problem = build_problem(
            n_nodes=2,
            arcs=[{"tail": 0, "head": 1}],
            commodities=[{"deficits": [-1.0, 1.0], "costs": [-1.0]}],
        )

        with pytest.raises(InvalidArgumentError) as exc_info:
            preprocess_problem(problem)

        assert exc_info.value.commodity == 0
        assert exc_info.value.arc == 0

    def test_result_reports_bounds(self):
        problem = _parallel_arcs(
            [INF],
            [{"deficits": [-2.0, 2.0], "costs": [1.0]}, {"deficits": [-3.0, 3.0], "costs": [1.0]}],
        )

        result = preprocess_problem(problem)

        np.testing.assert_allclose(result.flow_bounds, [2.0, 3.0])
        assert result.total_flow_bound == pytest.approx(5.0)


class TestInvalidArguments:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"deficit_change": math.inf},
            {"cost_decrease": math.inf},
            {"shared_increase": -1.0},
            {"individual_decrease": math.nan},
        ],
    )
    def test_rejects_bounds(self, kwargs):
        problem = _parallel_arcs([5.0], [{"deficits": [-1.0, 1.0], "costs": [1.0]}])

        with pytest.raises(InvalidArgumentError):
            preprocess_problem(problem, **kwargs)

    def test_invalid_argument_is_value_error(self):
        problem = _parallel_arcs([5.0], [{"deficits": [-1.0, 1.0], "costs": [1.0]}])

        with pytest.raises(ValueError):
            preprocess_problem(problem, deficit_change=math.inf)


class TestSharedConstraints:
    """Test selection of the shared-capacity constraints that must be kept."""

    def _two_commodities(self):
        capacities = [3.0, 4.0]
        return _parallel_arcs(
            [10.0, 4.0],
            [
                {"deficits": [-5.0, 5.0], "costs": [1.0, 1.0], "capacities": [capacities[0]] * 2},
                {"deficits": [-2.0, 2.0], "costs": [1.0, 1.0], "capacities": [capacities[1]] * 2},
            ],
        )

    def test_redundant_constraint_dropped_and_clamped(self):
        problem = self._two_commodities()

        result = preprocess_problem(problem)

        # Arc 0 can carry at most min(5, 3) + min(2, 4) = 5 < 10.
        assert problem.active_arcs == [1, INF_INDEX]
        assert problem.active_shared_arcs() == [1]
        assert problem.n_shared_constraints == 1
        assert problem.shared_capacities[0] == pytest.approx(5.0)
        assert result.redundant_shared_constraints == 1

    def test_all_constraints_kept_uses_empty_list(self):
        problem = _parallel_arcs([1.0, 2.0], [{"deficits": [-3.0, 3.0], "costs": [1.0, 1.0]}])

        preprocess_problem(problem)

        assert problem.active_arcs == []
        assert problem.n_shared_constraints == 2
        assert problem.active_shared_arcs() == [0, 1]

    def test_shared_decrease_is_subtracted_from_arc_bound(self):
        problem = self._two_commodities()

        preprocess_problem(problem, shared_decrease=1.0)

        # Arc 1: 4 >= 5 - 1, so its constraint goes too.
        assert problem.active_arcs == [INF_INDEX]
        assert problem.active_shared_arcs() == []
        assert problem.shared_capacities.tolist() == [5.0, 5.0]

    def test_unbounded_shared_decrease_keeps_every_finite_constraint(self):
        problem = _parallel_arcs([INF, 100.0], [{"deficits": [-5.0, 5.0], "costs": [1.0, 1.0]}])

        result = preprocess_problem(problem, shared_decrease=math.inf)

        assert problem.active_shared_arcs() == [1]
        assert problem.shared_capacities[0] == pytest.approx(5.0)
        assert problem.shared_capacities[1] == pytest.approx(100.0)
        assert result.redundant_shared_constraints == 1

    def test_individual_increase_widens_arc_bound(self):
        """Each commodity contributes min(flow bound, capacity + individual_increase)."""
        commodities = [
            {"deficits": [-5.0, 5.0], "costs": [1.0], "capacities": [3.0]},
            {"deficits": [-2.0, 2.0], "costs": [1.0], "capacities": [4.0]},
        ]

        problem = _parallel_arcs([6.0], commodities)
        result = preprocess_problem(problem, individual_increase=1.0)

        # min(5, 4) + min(2, 5) = 6 <= 6: still redundant.
        assert problem.active_shared_arcs() == []
        assert problem.shared_capacities[0] == pytest.approx(6.0)
        assert result.redundant_shared_constraints == 1

        problem = _parallel_arcs([6.0], commodities)
        result = preprocess_problem(problem, individual_increase=2.0)

        # min(5, 5) + min(2, 6) = 7 > 6: the constraint may bind.
        assert problem.active_shared_arcs() == [0]
        assert problem.shared_capacities[0] == pytest.approx(6.0)
        assert result.redundant_shared_constraints == 0

    def test_unbounded_individual_increase_uses_total_flow_bound(self):
        problem = _parallel_arcs(
            [6.0, 8.0],
            [
                {"deficits": [-5.0, 5.0], "costs": [1.0, 1.0], "capacities": [3.0, 3.0]},
                {"deficits": [-2.0, 2.0], "costs": [1.0, 1.0], "capacities": [4.0, 4.0]},
            ],
        )

        preprocess_problem(problem, individual_increase=math.inf)

        # Capacities are ignored: both arcs are compared with 5 + 2 = 7.
        assert problem.active_shared_arcs() == [0]
        assert problem.shared_capacities.tolist() == [6.0, 7.0]

    def test_shared_capacities_are_finite_afterwards(self):
        problem = _parallel_arcs([INF, INF], [{"deficits": [-5.0, 5.0], "costs": [1.0, 1.0]}])

        preprocess_problem(problem)

        assert np.all(np.isfinite(problem.shared_capacities))


class TestIndividualConstraints:
    """Test squeezing of the individual capacities."""

    def test_capacity_above_flow_bound_is_clamped(self):
        problem = _parallel_arcs(
            [10.0, 4.0],
            [
                {"deficits": [-5.0, 5.0], "costs": [1.0, 1.0], "capacities": [3.0, 3.0]},
                {"deficits": [-2.0, 2.0], "costs": [1.0, 1.0], "capacities": [4.0, 4.0]},
            ],
        )

        result = preprocess_problem(problem)

        assert problem.capacities[1].tolist() == [2.0, 2.0]
        assert problem.active_arcs_by_commodity[1] == [INF_INDEX]
        assert problem.active_arcs_by_commodity[0] == []
        assert result.redundant_individual_constraints == 2

    def test_capacity_above_active_shared_capacity_is_clamped(self):
        problem = _parallel_arcs(
            [4.0],
            [{"deficits": [-20.0, 20.0], "costs": [1.0], "capacities": [10.0]}],
        )

        preprocess_problem(problem)

        assert problem.active_shared_arcs() == [0]
        assert problem.capacities[0, 0] == pytest.approx(4.0)
        assert problem.active_individual_arcs(0) == []

    def test_inactive_shared_capacity_does_not_clamp(self):
        """Only arcs that keep their shared constraint may drop individual ones."""
        problem = _parallel_arcs(
            [3.0],
            [{"deficits": [-5.0, 5.0], "costs": [1.0], "capacities": [3.0]}],
        )

        result = preprocess_problem(problem)

        # The shared row is redundant (3 >= min(5, 3)) and so cannot replace
        # the individual one, although capacity >= shared capacity.
        assert problem.active_shared_arcs() == []
        assert problem.active_individual_arcs(0) == [0]
        assert problem.capacities[0, 0] == pytest.approx(3.0)
        assert result.redundant_individual_constraints == 0

    def test_unbounded_shared_increase_disables_shared_clamp(self):
        problem = _parallel_arcs(
            [4.0],
            [{"deficits": [-20.0, 20.0], "costs": [1.0], "capacities": [10.0]}],
        )

        preprocess_problem(problem, shared_increase=math.inf)

        assert problem.active_shared_arcs() == [0]
        assert problem.capacities[0, 0] == pytest.approx(10.0)
        assert problem.active_individual_arcs(0) == [0]

    def test_unbounded_individual_decrease_keeps_finite_constraints(self):
        problem = _parallel_arcs(
            [4.0],
            [{"deficits": [-2.0, 2.0], "costs": [1.0], "capacities": [10.0]}],
        )

        preprocess_problem(problem, individual_decrease=math.inf)

        assert problem.capacities[0, 0] == pytest.approx(10.0)
        assert problem.active_individual_arcs(0) == [0]


class TestDuplicateRows:
    """Test detection of commodities sharing verbatim data rows."""

    def _three_commodities(self):
        return _parallel_arcs(
            [10.0],
            [
                {"deficits": [-1.0, 1.0], "costs": [1.0]},
                {"deficits": [-2.0, 2.0], "costs": [2.0]},
                {"deficits": [-1.0, 1.0], "costs": [3.0]},
            ],
        )

    def test_both_members_are_flagged(self):
        problem = self._three_commodities()

        result = preprocess_problem(problem)

        assert problem.deficit_is_copy == [True, False, True]
        assert problem.deficit_source == [0, 1, 0]
        assert result.duplicate_deficit_rows == 1

    def test_clamped_capacities_detected_as_copies(self):
        problem = self._three_commodities()

        result = preprocess_problem(problem)

        # Individual capacities are clamped to the flow bounds 1, 2 and 1.
        assert problem.capacities[:, 0].tolist() == [1.0, 2.0, 1.0]
        assert problem.capacity_is_copy == [True, False, True]
        assert result.duplicate_capacity_rows == 1

    def test_no_copies_clears_markers(self):
        problem = self._three_commodities()

        preprocess_problem(problem)

        assert problem.cost_is_copy == []
        assert problem.cost_source == []

    def test_capacity_equal_to_shared_capacities(self):
        problem = _parallel_arcs(
            [0.0, 10.0],
            [{"deficits": [-3.0, 3.0], "costs": [1.0, 1.0]}],
        )

        preprocess_problem(problem)

        # Both rows end up as [0, 3].
        assert problem.capacity_is_copy == [True]
        assert problem.capacity_source == [-1]
