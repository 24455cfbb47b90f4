"""Capability interface a problem domain implements to be solved by voting.

The voting engine and solver loop only talk to a domain through
:class:`WorldModel`; they never inspect states or moves themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, Literal, Protocol, Tuple, TypeVar, Union

from .errors import IllegalMoveError, MakerError, ParseError

S = TypeVar("S")
M = TypeVar("M")

RejectionKind = Literal["malformed", "too_long", "illegal_move"]

Fingerprint = Tuple[str, str]


@dataclass(frozen=True)
class Candidate(Generic[S, M]):
    """A parsed, domain-validated proposal eligible for votes."""

    move: M
    resulting_state: S
    rationale: str
    raw_text: str


@dataclass(frozen=True)
class Rejection:
    """Why an oracle response was red-flagged."""

    kind: RejectionKind
    detail: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}"

    def to_error(self) -> MakerError:
        if self.kind == "illegal_move":
            return IllegalMoveError(self.detail)
        return ParseError(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "detail": self.detail}


ParseResult = Union[Candidate, Rejection]


class WorldModel(Protocol[S, M]):
    """Rules, terminal test and encodings of one problem domain.

    Every method must be pure: states are immutable and each transition
    returns a new value.
    """

    def apply_move(self, state: S, move: M) -> S:
        """Return the state after ``move``; raise ``InvalidTransition`` if illegal."""
        ...

    def validate_move(self, state: S, move: M) -> bool:
        ...

    def is_solved(self, state: S) -> bool:
        ...

    def canonicalize_state(self, state: S) -> str:
        ...

    def canonicalize_move(self, move: M) -> str:
        ...

    def parse_candidate(self, raw_text: str, current_state: S) -> ParseResult:
        """Extract, re-validate and apply a move proposed in ``raw_text``.

        The resulting state is always computed with :meth:`apply_move`;
        any state the text itself claims is ignored.
        """
        ...


class PromptBuilder(Protocol):
    """Builds the oracle prompts for a step from canonical encodings."""

    def system_prompt(self) -> str:
        ...

    def user_prompt(self, state_text: str, previous_move_text: str) -> str:
        ...


def fingerprint(world: WorldModel, candidate: Candidate) -> Fingerprint:
    """Key grouping equivalent candidates regardless of their raw text."""
    return (
        world.canonicalize_move(candidate.move),
        world.canonicalize_state(candidate.resulting_state),
    )
