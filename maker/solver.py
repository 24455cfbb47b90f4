"""Sequential solver loop: one voted, validated move per step."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional

from .config import SolverConfig
from .domain import PromptBuilder, WorldModel
from .errors import NoConsensusError, OracleTransportError, StepBudgetExceeded
from .events import (
    Error,
    EventChannel,
    EventSink,
    Solved,
    SolverEvent,
    Start,
    StepComplete,
    StepStart,
    VotingUpdate,
    discard,
)
from .llm_clients import Oracle
from .voting import VotingEngine

logger = logging.getLogger(__name__)

NO_PREVIOUS_MOVE = "None"


@dataclass(frozen=True)
class StepRecord:
    step_index: int
    move: Any
    resulting_state: Any
    reason: str  # "consensus" | "max_votes"
    attempts: int


@dataclass
class SolveResult:
    status: str  # "solved" | "failed"
    history: List[StepRecord] = field(default_factory=list)
    final_state: Any = None
    error: Optional[str] = None

    @property
    def solved(self) -> bool:
        return self.status == "solved"

    @property
    def moves(self) -> List[Any]:
        return [record.move for record in self.history]


class Solver:
    """Drives voting rounds until the domain reports the state as solved.

    The solver alone owns the current state and the move history. Each
    committed state is recomputed with ``world.apply_move`` from the
    winning move; a failed step commits nothing and ends the run.
    """

    def __init__(
        self,
        world: WorldModel,
        oracle: Oracle,
        prompts: PromptBuilder,
        config: SolverConfig,
    ) -> None:
        self.world = world
        self.oracle = oracle
        self.prompts = prompts
        self.config = config

    async def _step(
        self,
        step: int,
        state: Any,
        previous_move: Optional[Any],
        emit: EventSink,
    ) -> StepRecord:
        async def forward(event: Any) -> None:
            await emit(VotingUpdate(step=step, data=event))

        previous_text = (
            self.world.canonicalize_move(previous_move)
            if previous_move is not None
            else NO_PREVIOUS_MOVE
        )
        user_prompt = self.prompts.user_prompt(
            self.world.canonicalize_state(state), previous_text
        )

        engine = VotingEngine(self.world, self.config.voting, emit=forward)
        outcome = await engine.run(
            self.oracle, self.prompts.system_prompt(), user_prompt, state
        )
        if outcome.decision is None:
            raise NoConsensusError(step, outcome.attempts)

        move = outcome.decision.move
        return StepRecord(
            step_index=step,
            move=move,
            resulting_state=self.world.apply_move(state, move),
            reason=outcome.reason,
            attempts=outcome.attempts,
        )

    async def run(self, initial_state: Any, emit: EventSink = discard) -> SolveResult:
        state = initial_state
        history: List[StepRecord] = []
        previous_move: Optional[Any] = None
        max_steps = self.config.max_steps

        await emit(Start(config=self.config))

        step = 0
        while not self.world.is_solved(state):
            # cancellation checkpoint before each step
            await asyncio.sleep(0)
            step += 1
            try:
                if step > max_steps:
                    raise StepBudgetExceeded(max_steps)
                await emit(StepStart(step=step, state=state))
                record = await self._step(step, state, previous_move, emit)
            except (StepBudgetExceeded, NoConsensusError, OracleTransportError) as e:
                logger.error("Solve aborted at step %d: %s", step, e)
                await emit(Error(message=str(e)))
                return SolveResult("failed", history, state, str(e))
            except Exception as e:
                logger.exception("Solve crashed at step %d", step)
                await emit(Error(message=f"{type(e).__name__}: {e}"))
                raise

            history.append(record)
            state = record.resulting_state
            previous_move = record.move
            logger.info(
                "Step %d committed %s (%s, %d attempts)",
                step,
                self.world.canonicalize_move(record.move),
                record.reason,
                record.attempts,
            )
            await emit(StepComplete(step=step, record=record))

        await emit(Solved(moves=[r.move for r in history]))
        return SolveResult("solved", history, state)


async def stream_solve(
    solver: Solver, initial_state: Any, maxsize: int = 64
) -> AsyncIterator[SolverEvent]:
    """Run ``solver`` in the background and yield its events in order.

    Leaving the iteration early cancels the solve.
    """
    channel = EventChannel(maxsize)

    async def produce() -> SolveResult:
        try:
            return await solver.run(initial_state, channel.send)
        finally:
            channel.close()

    task = asyncio.ensure_future(produce())
    try:
        async for event in channel:
            yield event
        await task
    finally:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
