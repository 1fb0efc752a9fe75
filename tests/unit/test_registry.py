"""Tests for the explicit formulation registry."""

import pytest

from mmcf_solver import build_problem
from mmcf_solver.data import Formulation
from mmcf_solver.exceptions import ModelLogicError
from mmcf_solver.formulations import (
    FlowFormulation,
    FormulationRegistry,
    KnapsackFormulation,
    default_registry,
    register_builtin_formulations,
)


@pytest.fixture
def problem():
    return build_problem(
        n_nodes=2,
        arcs=[{"tail": 0, "head": 1, "shared_capacity": 5.0}],
        commodities=[{"deficits": [-5.0, 5.0], "costs": [1.0]}],
    )


def test_new_registry_is_empty(problem):
    registry = FormulationRegistry()

    assert Formulation.FLOW not in registry
    with pytest.raises(ModelLogicError):
        registry.create(Formulation.FLOW, problem)


def test_register_builtin_formulations(problem):
    registry = register_builtin_formulations(FormulationRegistry())

    assert Formulation.FLOW in registry
    assert Formulation.KNAPSACK in registry
    assert isinstance(registry.create(Formulation.FLOW, problem), FlowFormulation)
    assert isinstance(registry.create(Formulation.KNAPSACK, problem), KnapsackFormulation)


def test_default_registries_are_independent():
    first = default_registry()
    second = default_registry()
    first._builders.clear()

    assert Formulation.KNAPSACK in second


def test_registering_replaces_previous_builder(problem):
    class QuietFlow(FlowFormulation):
        pass

    registry = default_registry()
    registry.register(QuietFlow)

    assert type(registry.create(Formulation.FLOW, problem)) is QuietFlow
