"""Tests for the construction state machine."""

import pytest

from mmcf_solver.data import Formulation
from mmcf_solver.exceptions import ModelLogicError
from mmcf_solver.state import ConstructionState, ConstructionTracker


def test_tracker_starts_empty():
    tracker = ConstructionTracker()

    assert tracker.state is ConstructionState.EMPTY
    assert not tracker.variables_built
    assert not tracker.constraints_built
    assert tracker.formulation is None


def test_tracker_walks_through_states():
    tracker = ConstructionTracker()

    tracker.mark_variables_built(Formulation.KNAPSACK)
    assert tracker.state is ConstructionState.VARIABLES_BUILT
    assert tracker.formulation is Formulation.KNAPSACK

    tracker.mark_constraints_built(True)
    assert tracker.state is ConstructionState.FULLY_BUILT
    assert tracker.strong_forcing


def test_constraints_before_variables_is_illegal():
    tracker = ConstructionTracker()

    with pytest.raises(ModelLogicError, match="current state is 'empty'"):
        tracker.mark_constraints_built(False)


def test_variables_cannot_be_built_twice():
    tracker = ConstructionTracker()
    tracker.mark_variables_built(Formulation.FLOW)

    with pytest.raises(ModelLogicError):
        tracker.mark_variables_built(Formulation.KNAPSACK)
    assert tracker.formulation is Formulation.FLOW


def test_fully_built_is_terminal():
    tracker = ConstructionTracker()
    tracker.mark_variables_built(Formulation.FLOW)
    tracker.mark_constraints_built(False)

    with pytest.raises(ModelLogicError):
        tracker.mark_constraints_built(True)
    assert not tracker.strong_forcing


def test_rollback_variables_returns_to_empty():
    tracker = ConstructionTracker()
    tracker.mark_variables_built(Formulation.KNAPSACK)

    tracker.rollback_variables()

    assert tracker == ConstructionTracker()
    with pytest.raises(ModelLogicError):
        tracker.rollback_variables()


def test_rollback_refused_once_fully_built():
    tracker = ConstructionTracker()
    tracker.mark_variables_built(Formulation.FLOW)
    tracker.mark_constraints_built(False)

    with pytest.raises(ModelLogicError):
        tracker.rollback_variables()
    assert tracker.constraints_built


def test_reset_returns_to_empty():
    tracker = ConstructionTracker()
    tracker.mark_variables_built(Formulation.KNAPSACK)
    tracker.mark_constraints_built(True)

    tracker.reset()

    assert tracker == ConstructionTracker()
