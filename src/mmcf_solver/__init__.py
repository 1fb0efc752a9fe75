"""High-level entrypoints for the multicommodity min-cost flow library."""

from .abstract import LinearConstraint, SubModel, Variable
from .block import MMCFBlock
from .data import (
    INF,
    INF_INDEX,
    BlockConfig,
    Formulation,
    MMCFProblem,
    ModelOptions,
    active_indices,
    build_problem,
)
from .exceptions import (
    InfeasibleProblemError,
    InvalidArgumentError,
    InvalidProblemError,
    MMCFError,
    ModelLogicError,
    SolverConfigurationError,
    UnboundedProblemError,
    UnsupportedExtensionError,
)
from .flow_block import MCFBlock
from .formulations import (
    FlowFormulation,
    FormulationBuilder,
    FormulationRegistry,
    KnapsackFormulation,
    default_registry,
    register_builtin_formulations,
)
from .knapsack_block import BinaryKnapsackBlock
from .preprocessing import PreprocessingResult, estimate_flow_bounds, preprocess_problem
from .solver import MMCFResult, solve_mmcf
from .state import ConstructionState, ConstructionTracker
from .utils import ValidationResult, validate_solution

__version__ = "0.1.0"

__all__ = [
    # Main API
    "build_problem",
    "MMCFProblem",
    "MMCFBlock",
    "solve_mmcf",
    "MMCFResult",
    # Configuration
    "ModelOptions",
    "BlockConfig",
    "Formulation",
    # Sentinels
    "INF",
    "INF_INDEX",
    "active_indices",
    # Preprocessing
    "preprocess_problem",
    "estimate_flow_bounds",
    "PreprocessingResult",
    # Abstract representation
    "Variable",
    "LinearConstraint",
    "SubModel",
    "MCFBlock",
    "BinaryKnapsackBlock",
    "FormulationBuilder",
    "FlowFormulation",
    "KnapsackFormulation",
    "FormulationRegistry",
    "default_registry",
    "register_builtin_formulations",
    "ConstructionState",
    "ConstructionTracker",
    # Utilities
    "validate_solution",
    "ValidationResult",
    # Exceptions
    "MMCFError",
    "InvalidProblemError",
    "InvalidArgumentError",
    "ModelLogicError",
    "UnsupportedExtensionError",
    "InfeasibleProblemError",
    "UnboundedProblemError",
    "SolverConfigurationError",
    # Version
    "__version__",
]
