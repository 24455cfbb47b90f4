"""Tower of Hanoi as a voting-solvable domain.

State is a tuple of three pegs, each a tuple of disk sizes from bottom to
top. A move ``[disk, from, to]`` lifts the top disk of peg ``from`` onto
peg ``to``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .config import MAX_RESPONSE_CHARS, SolverConfig, VotingConfig
from .domain import Candidate, ParseResult, Rejection
from .errors import InvalidTransition

HanoiState = Tuple[Tuple[int, ...], Tuple[int, ...], Tuple[int, ...]]

NUM_PEGS = 3

_MOVE_RE = re.compile(r"move\s*=\s*\[\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*\]")
_NEXT_STATE_MARKER = "next_state ="


@dataclass(frozen=True)
class HanoiMove:
    disk: int
    src: int
    dst: int

    def as_list(self) -> List[int]:
        return [self.disk, self.src, self.dst]


def initial_state(num_disks: int) -> HanoiState:
    """Peg 0 holds ``num_disks .. 1``, the other pegs are empty."""
    return (tuple(range(num_disks, 0, -1)), (), ())


def optimal_moves(num_disks: int, src: int = 0, dst: int = 2, via: int = 1) -> List[HanoiMove]:
    """Reference solution with ``2 ** num_disks - 1`` moves."""
    if num_disks == 0:
        return []
    return (
        optimal_moves(num_disks - 1, src, via, dst)
        + [HanoiMove(num_disks, src, dst)]
        + optimal_moves(num_disks - 1, via, dst, src)
    )


class HanoiWorld:
    """Rules and encodings of an ``num_disks``-disk Tower of Hanoi."""

    def __init__(self, num_disks: int, max_response_chars: int = MAX_RESPONSE_CHARS) -> None:
        if num_disks < 1:
            raise ValueError(f"num_disks must be >= 1, got {num_disks}")
        self.num_disks = num_disks
        self.max_response_chars = max_response_chars

    # ------------------------------------------------------------------ rules

    def validate_move(self, state: HanoiState, move: HanoiMove) -> bool:
        if not (0 <= move.src < NUM_PEGS and 0 <= move.dst < NUM_PEGS):
            return False
        if move.src == move.dst:
            return False

        from_peg = state[move.src]
        to_peg = state[move.dst]

        if not from_peg:
            return False
        if from_peg[-1] != move.disk:
            return False  # not the top disk
        if to_peg and move.disk > to_peg[-1]:
            return False  # larger on smaller
        return True

    def apply_move(self, state: HanoiState, move: HanoiMove) -> HanoiState:
        if not self.validate_move(state, move):
            raise InvalidTransition(
                f"Move {self.canonicalize_move(move)} is not legal from "
                f"{self.canonicalize_state(state)}"
            )
        pegs = [list(peg) for peg in state]
        pegs[move.dst].append(pegs[move.src].pop())
        return (tuple(pegs[0]), tuple(pegs[1]), tuple(pegs[2]))

    def is_solved(self, state: HanoiState) -> bool:
        return state[2] == tuple(range(self.num_disks, 0, -1))

    # -------------------------------------------------------------- encodings

    def canonicalize_state(self, state: HanoiState) -> str:
        return json.dumps([list(peg) for peg in state])

    def canonicalize_move(self, move: HanoiMove) -> str:
        return json.dumps(move.as_list())

    # ---------------------------------------------------------------- parsing

    def parse_candidate(self, raw_text: str, current_state: HanoiState) -> ParseResult:
        """Red-flag and parse one oracle response.

        Only the ``move = [...]`` line is trusted. The next state is
        recomputed from it, whatever ``next_state`` the text claims.
        """
        if len(raw_text) > self.max_response_chars:
            return Rejection(
                "too_long",
                f"response has {len(raw_text)} chars, cap is {self.max_response_chars}",
            )

        m = _MOVE_RE.search(raw_text)
        if m is None:
            return Rejection("malformed", "no `move = [disk, from, to]` found")

        move = HanoiMove(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if not self.validate_move(current_state, move):
            return Rejection(
                "illegal_move",
                f"move {self.canonicalize_move(move)} is illegal from "
                f"{self.canonicalize_state(current_state)}",
            )

        state_index = raw_text.rfind(_NEXT_STATE_MARKER)
        rationale = raw_text[:state_index] if state_index != -1 else raw_text

        return Candidate(
            move=move,
            resulting_state=self.apply_move(current_state, move),
            rationale=rationale.strip(),
            raw_text=raw_text,
        )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are helping solve a Tower of Hanoi puzzle with 3 pegs numbered 0, 1 and 2.\n"
    "Disks are numbered by size, 1 being the smallest. Each peg is listed from "
    "bottom to top.\n\n"
    "Rules:\n"
    "- Only one disk can be moved at a time.\n"
    "- Only the top disk of a peg can be moved.\n"
    "- A larger disk may never be placed on top of a smaller disk.\n\n"
    "Strategy: on every other move (the 1st, 3rd, 5th, ...) move disk 1 one peg "
    "along the cycle 0 -> 2 -> 1 -> 0 when the number of disks is odd, or "
    "0 -> 1 -> 2 -> 0 when it is even. On the remaining moves make the only "
    "legal move that does not involve disk 1.\n\n"
    "You are given the current state and the previous move. Output ONLY the next "
    "move and the resulting state, exactly in this format:\n"
    "move = [disk, from_peg, to_peg]\n"
    "next_state = [[...], [...], [...]]\n"
    "Keep any reasoning short and put it before these two lines."
)

USER_TEMPLATE = (
    "Previous move: {previous_move}\n"
    "Current state: {current_state}\n\n"
    "Based on the previous move and the current state, find the single next move "
    "that follows the strategy, and the resulting next state."
)


class HanoiPrompts:
    """Prompt builder for :class:`HanoiWorld`."""

    def system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def user_prompt(self, state_text: str, previous_move_text: str) -> str:
        return USER_TEMPLATE.format(
            previous_move=previous_move_text,
            current_state=state_text,
        )


def step_budget(num_disks: int) -> int:
    """Step cap: twice the `2 ** num_disks` bound on the optimal move count."""
    return 2 ** num_disks * 2


def hanoi_solver_config(
    num_disks: int,
    voting: Optional[VotingConfig] = None,
    **voting_kwargs: Any,
) -> SolverConfig:
    if voting is None:
        voting = VotingConfig(**voting_kwargs)
    return SolverConfig(
        voting=voting,
        max_steps=step_budget(num_disks),
        problem={"domain": "hanoi", "num_disks": num_disks},
    )
