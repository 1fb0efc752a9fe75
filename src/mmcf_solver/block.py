"""The multicommodity flow block: data store plus abstract representation."""

from __future__ import annotations

import logging

import numpy as np

from .abstract import LinearConstraint, SubModel, Variable
from .data import BlockConfig, Formulation, MMCFProblem, ModelOptions
from .exceptions import InvalidProblemError
from .formulations import (
    FormulationBuilder,
    FormulationRegistry,
    KnapsackFormulation,
    default_registry,
)
from .preprocessing import PreprocessingResult, preprocess_problem
from .state import ConstructionTracker


def _read_only(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.flags.writeable = False
    return view


class MMCFBlock:
    """Multicommodity min-cost flow problem and its abstract representation.

    The block owns a data store (``MMCFProblem``), lets the caller preprocess
    it once, and then builds one of two equivalent decompositions:

    - flow decomposition (formulation 0, the default): one min-cost flow
      sub-model per commodity, shared-capacity constraints in the block;
    - knapsack decomposition (any nonzero formulation): one binary knapsack
      sub-model per arc, flow-conservation constraints in the block.

    Variable and constraint generation each run at most once; calling them
    again is a no-op. Accessors return 0.0 (or None) until the step they
    depend on has run.

    Examples:
        >>> block = MMCFBlock(problem)
        >>> block.preprocess()
        >>> block.generate_abstract_constraints()  # builds the variables first
        >>> result = solve_mmcf(block)
        >>> block.get_flow(0, 0)
        5.0

    Note:
        A block is not thread-safe: construction and the dual/primal setters
        must be serialized by the caller. Once built, the sub-models have
        disjoint variables and constraints and may be processed in parallel.
    """

    def __init__(
        self,
        problem: MMCFProblem | None = None,
        block_config: BlockConfig | None = None,
        registry: FormulationRegistry | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.block_config = block_config if block_config is not None else BlockConfig()
        self.registry = registry if registry is not None else default_registry()
        self.problem: MMCFProblem | None = None
        self.tracker = ConstructionTracker()
        self._builder: FormulationBuilder | None = None
        if problem is not None:
            self.load(problem)

    # ------------------------------------------------------------------ data

    def load(self, problem: MMCFProblem) -> None:
        """Replace the data store, discarding any previous representation."""
        self.reset()
        self.problem = problem
        self.logger.info(f"Loaded {problem.summary()}")

    def reset(self) -> None:
        """Clear the data store, the sub-models and the constraints together."""
        self.problem = None
        self._builder = None
        self.tracker.reset()

    def _require_problem(self) -> MMCFProblem:
        if self.problem is None:
            raise InvalidProblemError("No problem loaded: call load() first.")
        return self.problem

    def preprocess(
        self,
        shared_increase: float = 0.0,
        shared_decrease: float = 0.0,
        individual_increase: float = 0.0,
        individual_decrease: float = 0.0,
        deficit_change: float = 0.0,
        cost_decrease: float = 0.0,
    ) -> PreprocessingResult:
        """Preprocess the loaded data store in place.

        See ``preprocess_problem()`` for the meaning of the bounds. Must be
        called at most once and before the abstract representation is built.
        """
        return preprocess_problem(
            self._require_problem(),
            shared_increase=shared_increase,
            shared_decrease=shared_decrease,
            individual_increase=individual_increase,
            individual_decrease=individual_decrease,
            deficit_change=deficit_change,
            cost_decrease=cost_decrease,
        )

    @property
    def n_nodes(self) -> int:
        return 0 if self.problem is None else self.problem.n_nodes

    @property
    def n_arcs(self) -> int:
        return 0 if self.problem is None else self.problem.n_arcs

    @property
    def n_commodities(self) -> int:
        return 0 if self.problem is None else self.problem.n_commodities

    def get_shared_capacities(self) -> np.ndarray:
        return _read_only(self._require_problem().shared_capacities)

    def get_capacities(self, commodity: int | None = None) -> np.ndarray:
        table = self._require_problem().capacities
        return _read_only(table if commodity is None else table[commodity])

    def get_costs(self, commodity: int | None = None) -> np.ndarray:
        table = self._require_problem().costs
        return _read_only(table if commodity is None else table[commodity])

    def get_deficits(self, commodity: int | None = None) -> np.ndarray:
        table = self._require_problem().deficits
        return _read_only(table if commodity is None else table[commodity])

    # -------------------------------------------------------- construction

    def _select_formulation(self, config: int | ModelOptions | None) -> Formulation:
        if isinstance(config, ModelOptions):
            return Formulation.from_value(config.formulation)
        if config is not None:
            return Formulation.from_value(config)
        if self.block_config.static_variables is not None:
            return Formulation.from_value(self.block_config.static_variables)
        return Formulation.FLOW

    def _select_strong_forcing(self, config: int | bool | ModelOptions | None) -> bool:
        if isinstance(config, ModelOptions):
            return config.strong_forcing
        if config is not None:
            return bool(config)
        if self.block_config.static_constraints is not None:
            return bool(self.block_config.static_constraints)
        return False

    def generate_abstract_variables(self, config: int | ModelOptions | None = None) -> None:
        """Choose the formulation and build the sub-models with their variables.

        Args:
            config: Formulation selector (0 = flow, nonzero = knapsack) or a
                    ModelOptions. When None, ``block_config.static_variables``
                    is used, and the flow decomposition when that is None too.
        """
        if self.tracker.variables_built:
            self.logger.debug("Abstract variables already built; ignoring request")
            return
        problem = self._require_problem()
        formulation = self._select_formulation(config)

        # The builder becomes visible only once it is complete.
        builder = self.registry.create(formulation, problem)
        builder.build()

        self._builder = builder
        self.tracker.mark_variables_built(formulation)
        self.logger.info(f"Abstract variables built with the {formulation.name.lower()} formulation")

    def generate_abstract_constraints(
        self, config: int | bool | ModelOptions | None = None
    ) -> None:
        """Generate the sub-model constraints and the coupling constraints.

        Builds the variables first if needed, using ``config`` when it is a
        ModelOptions and the block defaults otherwise. On failure the block
        returns to the state it had before the call, so variables built here
        are discarded as well.

        Args:
            config: Nonzero (or ``ModelOptions.strong_forcing``) adds strong
                    forcing constraints to the knapsack decomposition. When
                    None, ``block_config.static_constraints`` is used.
        """
        if self.tracker.constraints_built:
            self.logger.debug("Abstract constraints already built; ignoring request")
            return
        built_variables = not self.tracker.variables_built
        if built_variables:
            # A bare int selects strong forcing, not the formulation.
            self.generate_abstract_variables(config if isinstance(config, ModelOptions) else None)
        strong_forcing = self._select_strong_forcing(config)

        builder = self._builder
        try:
            builder.generate_constraints(strong_forcing)
        except Exception:
            builder.discard_constraints()
            if built_variables:
                self._builder = None
                self.tracker.rollback_variables()
            raise

        self.tracker.mark_constraints_built(strong_forcing)
        self.logger.info(f"Abstract constraints built ({len(builder.parent_constraints())} coupling rows)")

    @property
    def formulation(self) -> Formulation | None:
        return self.tracker.formulation

    def uses_flow_decomposition(self) -> bool:
        return self.tracker.formulation is not Formulation.KNAPSACK

    @property
    def objective_sense(self) -> str:
        return "min"

    @property
    def sub_models(self) -> list[SubModel]:
        return [] if self._builder is None else list(self._builder.sub_models)

    def variables(self) -> list[Variable]:
        return [] if self._builder is None else self._builder.variables()

    def constraints(self) -> list[LinearConstraint]:
        if self._builder is None or not self.tracker.constraints_built:
            return []
        return self._builder.constraints()

    def parent_constraints(self) -> list[LinearConstraint]:
        if self._builder is None or not self.tracker.constraints_built:
            return []
        return self._builder.parent_constraints()

    def objective(self) -> list[tuple[Variable, float]]:
        return [] if self._builder is None else self._builder.objective()

    # ----------------------------------------------------------- accessors

    def get_flow(self, commodity: int, arc: int) -> float:
        """Flow of ``commodity`` on ``arc``, in physical units for both formulations."""
        if self._builder is None:
            return 0.0
        return self._builder.get_flow(commodity, arc)

    def get_flows(self, commodity: int) -> np.ndarray:
        if self._builder is None:
            return np.zeros(self.n_arcs)
        return self._builder.get_flows(commodity)

    def get_activation(self, arc: int) -> float:
        """Value of the activation item of ``arc`` (knapsack decomposition only)."""
        if isinstance(self._builder, KnapsackFormulation):
            return self._builder.get_activation(arc)
        return 0.0

    def get_flow_variable(self, commodity: int, arc: int) -> Variable | None:
        if self._builder is None:
            return None
        return self._builder.get_flow_variable(commodity, arc)

    def get_potential(self, commodity: int, node: int) -> float:
        if not self.tracker.constraints_built:
            return 0.0
        return self._builder.get_potential(commodity, node)

    def get_dual(self, arc: int) -> float:
        """Dual value of the shared-capacity constraint of ``arc``."""
        if not self.tracker.constraints_built:
            return 0.0
        return self._builder.get_dual(arc)

    def set_potential(self, value: float, commodity: int, node: int) -> None:
        if self.tracker.constraints_built:
            self._builder.set_potential(value, commodity, node)

    def set_dual(self, value: float, arc: int) -> None:
        if self.tracker.constraints_built:
            self._builder.set_dual(value, arc)

    def __repr__(self) -> str:
        if self.problem is None:
            return "MMCFBlock(empty)"
        return (
            f"MMCFBlock({self.problem.summary()}, state={self.tracker.state.value}, "
            f"formulation={self.formulation.name.lower() if self.formulation else None})"
        )
