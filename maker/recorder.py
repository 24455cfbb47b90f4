"""Run logs: fold a solve's event stream into one JSONL record."""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .config import RUN_LOG_PATH
from .events import (
    Decision,
    Error,
    EventSink,
    Solved,
    Start,
    StepComplete,
    StepStart,
    VoteCast,
    VoteRejected,
    VotingUpdate,
    to_plain,
)


@dataclass
class StepLog:
    step_index: int
    state: Any = None
    accepted: int = 0
    rejections: List[Dict[str, Any]] = field(default_factory=list)
    decision_reason: Optional[str] = None
    move: Any = None
    resulting_state: Any = None


@dataclass
class RunLog:
    run_id: str
    timestamp: float
    problem: Dict[str, Any]
    config: Dict[str, Any]
    status: str  # "running" | "solved" | "failed"
    moves: List[Any]
    steps: List[StepLog]
    metrics: Dict[str, Any]


class RunRecorder:
    """Event sink that builds a :class:`RunLog` while a solve is running.

    Chain it with another sink through ``forward`` to keep streaming the
    events elsewhere.
    """

    def __init__(
        self, problem_id: str = "run", forward: Optional[EventSink] = None
    ) -> None:
        self.forward = forward
        self._start_time = time.time()
        self._steps: Dict[int, StepLog] = {}
        self.run = RunLog(
            run_id=f"{problem_id}-{int(self._start_time * 1000)}-{uuid.uuid4().hex[:6]}",
            timestamp=self._start_time,
            problem={},
            config={},
            status="running",
            moves=[],
            steps=[],
            metrics={
                "total_attempts": 0,
                "total_rejections": 0,
                "total_tokens": 0,
                "consensus_steps": 0,
                "max_votes_steps": 0,
                "terminated_reason": None,
                "elapsed_sec": 0.0,
            },
        )

    def _step(self, index: int) -> StepLog:
        if index not in self._steps:
            self._steps[index] = StepLog(step_index=index)
            self.run.steps.append(self._steps[index])
        return self._steps[index]

    def _finish(self, status: str, reason: Optional[str]) -> None:
        self.run.status = status
        self.run.metrics["terminated_reason"] = reason
        self.run.metrics["elapsed_sec"] = time.time() - self._start_time

    async def __call__(self, event: Any) -> None:
        metrics = self.run.metrics

        if isinstance(event, Start):
            self.run.config = to_plain(event.config)
            self.run.problem = dict(self.run.config.get("problem", {}))
        elif isinstance(event, StepStart):
            self._step(event.step).state = to_plain(event.state)
        elif isinstance(event, VotingUpdate):
            step_log = self._step(event.step)
            vote = event.data
            if isinstance(vote, VoteCast):
                metrics["total_attempts"] += 1
                metrics["total_tokens"] += vote.tokens
                step_log.accepted += 1
            elif isinstance(vote, VoteRejected):
                metrics["total_attempts"] += 1
                metrics["total_tokens"] += vote.tokens
                metrics["total_rejections"] += 1
                step_log.rejections.append(
                    {"attempt": vote.attempt, "reason": to_plain(vote.reason)}
                )
            elif isinstance(vote, Decision):
                step_log.decision_reason = vote.reason
                metrics[f"{vote.reason}_steps"] += 1
        elif isinstance(event, StepComplete):
            step_log = self._step(event.step)
            step_log.move = to_plain(event.record.move)
            step_log.resulting_state = to_plain(event.record.resulting_state)
            self.run.moves.append(step_log.move)
        elif isinstance(event, Solved):
            self._finish("solved", None)
        elif isinstance(event, Error):
            self._finish("failed", event.message)

        if self.forward is not None:
            await self.forward(event)


def append_run_log(run: RunLog, path: str = RUN_LOG_PATH) -> None:
    """Append a run log to the JSONL file."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(run)) + "\n")


def load_runs(path: str = RUN_LOG_PATH) -> List[Dict[str, Any]]:
    runs: List[Dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    runs.append(json.loads(line))
    except FileNotFoundError:
        pass
    return runs
