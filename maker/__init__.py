"""Consensus-driven stepwise solver.

This package implements:
- A voting engine that samples a stochastic oracle (an LLM) for the next
  move, red-flags malformed or illegal proposals, and commits the first
  candidate that leads the runner-up by k votes.
- A solver loop that chains voted steps until the problem is solved,
  always recomputing the next state from the validated move.
- A typed event stream describing every vote, decision and step.
- A Tower of Hanoi domain as the reference problem.

The oracle can be an OpenAI-compatible API or a local transformers model.
"""

from .config import SolverConfig, VotingConfig
from .domain import Candidate, PromptBuilder, Rejection, WorldModel, fingerprint
from .errors import (
    IllegalMoveError,
    InvalidTransition,
    MakerError,
    NoConsensusError,
    OracleTransportError,
    ParseError,
    StepBudgetExceeded,
)
from .solver import SolveResult, Solver, StepRecord, stream_solve
from .voting import VoteOutcome, VoteTally, VotingEngine

__all__ = [
    "Candidate",
    "IllegalMoveError",
    "InvalidTransition",
    "MakerError",
    "NoConsensusError",
    "OracleTransportError",
    "ParseError",
    "PromptBuilder",
    "Rejection",
    "SolveResult",
    "Solver",
    "SolverConfig",
    "StepBudgetExceeded",
    "StepRecord",
    "VoteOutcome",
    "VoteTally",
    "VotingConfig",
    "VotingEngine",
    "WorldModel",
    "fingerprint",
    "stream_solve",
]
