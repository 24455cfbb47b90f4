"""Shared fakes for the solver tests."""

import asyncio
import re
from typing import List, Union

import pytest

from maker.domain import Candidate, Rejection
from maker.errors import InvalidTransition
from maker.llm_clients import OracleResponse

_STEP_RE = re.compile(r"step\s*=\s*\+?(-?\d+)")


class ScriptedOracle:
    """Returns canned responses in order; exceptions in the script are raised."""

    def __init__(self, responses: List[Union[str, Exception]]) -> None:
        self.responses = list(responses)
        self.calls: List[dict] = []

    async def call(self, system_prompt: str, user_prompt: str, temperature: float) -> OracleResponse:
        self.calls.append(
            {"system": system_prompt, "user": user_prompt, "temperature": temperature}
        )
        if not self.responses:
            raise AssertionError("oracle called more often than scripted")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return OracleResponse(text=item, token_count=len(item.split()))


class SlowOracle(ScriptedOracle):
    """Hangs before answering; counts how many calls were cancelled.

    Scripted exceptions are raised at once.
    """

    def __init__(self, responses, delay: float = 10.0) -> None:
        super().__init__(responses)
        self.delay = delay
        self.cancelled = 0

    async def call(self, system_prompt, user_prompt, temperature):
        if not (self.responses and isinstance(self.responses[0], Exception)):
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        return await super().call(system_prompt, user_prompt, temperature)


class CounterWorld:
    """Count from 0 up to ``target`` in increments of 1, 2 or 3."""

    def __init__(self, target: int = 10) -> None:
        self.target = target

    def validate_move(self, state: int, move: int) -> bool:
        return move in (1, 2, 3) and state + move <= self.target

    def apply_move(self, state: int, move: int) -> int:
        if not self.validate_move(state, move):
            raise InvalidTransition(f"+{move} from {state}")
        return state + move

    def is_solved(self, state: int) -> bool:
        return state == self.target

    def canonicalize_state(self, state: int) -> str:
        return str(state)

    def canonicalize_move(self, move: int) -> str:
        return f"+{move}"

    def parse_candidate(self, raw_text: str, current_state: int):
        m = _STEP_RE.search(raw_text)
        if m is None:
            return Rejection("malformed", "no step found")
        move = int(m.group(1))
        if not self.validate_move(current_state, move):
            return Rejection("illegal_move", f"+{move} from {current_state}")
        return Candidate(
            move=move,
            resulting_state=self.apply_move(current_state, move),
            rationale=raw_text[: m.start()].strip(),
            raw_text=raw_text,
        )


class EchoPrompts:
    def system_prompt(self) -> str:
        return "count"

    def user_prompt(self, state_text: str, previous_move_text: str) -> str:
        return f"state={state_text} previous={previous_move_text}"


def hanoi_text(disk: int, src: int, dst: int, claimed_state: str = "[[], [], []]") -> str:
    return f"Thinking briefly.\nmove = [{disk}, {src}, {dst}]\nnext_state = {claimed_state}"


class EventLog:
    """Async sink that keeps every event."""

    def __init__(self) -> None:
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [e.type for e in self.events]


@pytest.fixture
def counter_world():
    return CounterWorld()


@pytest.fixture
def events():
    return EventLog()
