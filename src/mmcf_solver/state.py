"""Construction state tracking for the abstract representation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .data import Formulation
from .exceptions import ModelLogicError


class ConstructionState(Enum):
    """How much of the abstract representation exists."""

    EMPTY = "empty"
    VARIABLES_BUILT = "variables_built"
    FULLY_BUILT = "fully_built"


_TRANSITIONS: dict[ConstructionState, ConstructionState] = {
    ConstructionState.EMPTY: ConstructionState.VARIABLES_BUILT,
    ConstructionState.VARIABLES_BUILT: ConstructionState.FULLY_BUILT,
}


@dataclass
class ConstructionTracker:
    """One-shot guard for variable and constraint generation.

    The formulation is fixed when variables are built and the strong forcing
    choice when constraints are built; neither can change until ``reset()``.

    Attributes:
        state: Current construction state.
        formulation: Decomposition chosen at variable construction, or None.
        strong_forcing: Whether strong forcing constraints were requested.
    """

    state: ConstructionState = ConstructionState.EMPTY
    formulation: Formulation | None = None
    strong_forcing: bool = False

    @property
    def variables_built(self) -> bool:
        return self.state is not ConstructionState.EMPTY

    @property
    def constraints_built(self) -> bool:
        return self.state is ConstructionState.FULLY_BUILT

    def _advance(self, expected: ConstructionState) -> None:
        if self.state is not expected:
            raise ModelLogicError(
                f"Cannot leave construction state '{expected.value}': current state is "
                f"'{self.state.value}'."
            )
        self.state = _TRANSITIONS[expected]

    def mark_variables_built(self, formulation: Formulation) -> None:
        self._advance(ConstructionState.EMPTY)
        self.formulation = formulation

    def mark_constraints_built(self, strong_forcing: bool) -> None:
        self._advance(ConstructionState.VARIABLES_BUILT)
        self.strong_forcing = strong_forcing

    def rollback_variables(self) -> None:
        """Return from VARIABLES_BUILT to EMPTY after a failed implicit build."""
        if self.state is not ConstructionState.VARIABLES_BUILT:
            raise ModelLogicError(
                f"Cannot roll back variables: current state is '{self.state.value}'."
            )
        self.state = ConstructionState.EMPTY
        self.formulation = None

    def reset(self) -> None:
        self.state = ConstructionState.EMPTY
        self.formulation = None
        self.strong_forcing = False
