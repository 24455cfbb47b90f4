"""Error taxonomy for the solver.

Parse and legality failures are non-fatal: the voting engine records them
as rejected votes. Transport escalation, an empty tally and an exceeded
step budget are fatal and end the run with an ``error`` event.
"""

from __future__ import annotations


class MakerError(Exception):
    """Base class for all solver errors."""


class InvalidTransition(MakerError):
    """A move was applied that is not legal from the given state."""


class ParseError(MakerError):
    """Oracle text did not contain a well-formed move."""


class IllegalMoveError(MakerError):
    """Oracle proposed a well-formed move that the domain forbids."""


class OracleTransportError(MakerError):
    """The oracle could not be reached (network, timeout, rate limit)."""


class NoConsensusError(MakerError):
    """Every attempt of a step was rejected, so no candidate exists."""

    def __init__(self, step_index: int, attempts: int) -> None:
        super().__init__(
            f"Failed to find valid move at step {step_index}: "
            f"all {attempts} attempts were rejected"
        )
        self.step_index = step_index
        self.attempts = attempts


class StepBudgetExceeded(MakerError):
    """The solver used more steps than its heuristic cap allows."""

    def __init__(self, max_steps: int) -> None:
        super().__init__(f"Exceeded max expected steps ({max_steps}).")
        self.max_steps = max_steps


__all__ = [
    "MakerError",
    "InvalidTransition",
    "ParseError",
    "IllegalMoveError",
    "OracleTransportError",
    "NoConsensusError",
    "StepBudgetExceeded",
]
