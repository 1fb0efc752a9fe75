"""Custom exceptions for the multicommodity flow library."""

from __future__ import annotations


class MMCFError(Exception):
    """Base exception for all multicommodity flow errors.

    All custom exceptions in the mmcf_solver package inherit from this class,
    allowing users to catch every library error with a single except clause.

    Example:
        try:
            block.preprocess(deficit_change=math.inf)
        except MMCFError as e:
            print(f"Model error: {e}")
    """


class InvalidProblemError(MMCFError):
    """Raised when the problem data is invalid or malformed.

    This includes:
    - Fewer than two nodes, no arcs or no commodities
    - Arc endpoints outside the node range
    - Self-loops
    - Tables whose shape does not match the declared dimensions
    - Negative capacities

    Example:
        InvalidProblemError("Self-loop detected on arc 3 (node 1 -> node 1)")
    """


class InvalidArgumentError(MMCFError, ValueError):
    """Raised when an operation receives an argument it cannot work with.

    This includes:
    - Unbounded deficit-change or cost-decrease bounds given to the preprocessor
    - Negative preprocessing bounds
    - An arc whose cost may become negative while its capacity is unbounded,
      which makes any estimate of the flow of a commodity unsound

    Example:
        InvalidArgumentError("Arc 4 of commodity 0 may have negative cost and has unbounded capacity")
    """

    def __init__(
        self,
        message: str,
        commodity: int | None = None,
        arc: int | None = None,
    ):
        """Initialize with message and optional location of the offending entry."""
        super().__init__(message)
        self.commodity = commodity
        self.arc = arc


class ModelLogicError(MMCFError):
    """Raised when the model would be built in a way that makes no sense.

    This includes:
    - A shared-capacity coupling constraint whose bound is not finite
    - A formulation identifier that no registered builder handles

    Example:
        ModelLogicError("Shared-capacity constraint of arc 2 requires a finite bound")
    """


class UnsupportedExtensionError(ModelLogicError):
    """Raised when data uses the legacy extra side-constraint extension.

    The extension is accepted by some input encodings but has no defined
    semantics in the abstract representation, so it is rejected rather than
    silently dropped.
    """


class InfeasibleProblemError(MMCFError):
    """Raised when the assembled model has no feasible solution.

    Example:
        InfeasibleProblemError("HiGHS reports the model is infeasible", status=2)
    """

    def __init__(self, message: str, status: int | None = None):
        """Initialize with message and optional backend status code."""
        super().__init__(message)
        self.status = status


class UnboundedProblemError(MMCFError):
    """Raised when the assembled model has an unbounded objective.

    In multicommodity flow problems this typically indicates a negative-cost
    cycle made of arcs with no finite individual or shared capacity.
    """

    def __init__(self, message: str, status: int | None = None):
        """Initialize with message and optional backend status code."""
        super().__init__(message)
        self.status = status


class SolverConfigurationError(MMCFError):
    """Raised when model or solver configuration values are invalid.

    Example:
        SolverConfigurationError("tolerance must be positive, got -1.0")
    """
