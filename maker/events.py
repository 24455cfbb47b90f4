"""Typed events emitted while solving, and a channel to stream them.

Order within one step is the wire contract: per attempt a ``vote_cast``
(followed by ``vote_progress``) or a ``vote_rejected``, then exactly one
``decision``; or the run ends in an ``error`` instead.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union


def to_plain(value: Any) -> Any:
    """Convert dataclasses and tuples into JSON-friendly structures."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class _Event:
    type: str = field(init=False, default="")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: to_plain(getattr(self, f.name)) for f in fields(self)}


# ---------------------------------------------------------------------------
# Vote events (one step)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VoteCast(_Event):
    candidate: Any
    raw: str
    attempt: int
    tokens: int = 0
    type: str = field(init=False, default="vote_cast")


@dataclass(frozen=True)
class VoteRejected(_Event):
    raw: str
    reason: Any
    attempt: int
    tokens: int = 0
    type: str = field(init=False, default="vote_rejected")


@dataclass(frozen=True)
class VoteProgress(_Event):
    attempts: int
    leader: Any
    leader_count: int
    second_count: int
    margin: int
    type: str = field(init=False, default="vote_progress")


@dataclass(frozen=True)
class Decision(_Event):
    result: Any
    reason: str  # "consensus" | "max_votes"
    type: str = field(init=False, default="decision")


VoteEvent = Union[VoteCast, VoteRejected, VoteProgress, Decision]


# ---------------------------------------------------------------------------
# Solver events (whole run)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Start(_Event):
    config: Any
    type: str = field(init=False, default="start")


@dataclass(frozen=True)
class StepStart(_Event):
    step: int
    state: Any
    type: str = field(init=False, default="step_start")


@dataclass(frozen=True)
class VotingUpdate(_Event):
    step: int
    data: VoteEvent
    type: str = field(init=False, default="voting_update")


@dataclass(frozen=True)
class StepComplete(_Event):
    step: int
    record: Any
    type: str = field(init=False, default="step_complete")


@dataclass(frozen=True)
class Solved(_Event):
    moves: List[Any]
    type: str = field(init=False, default="solved")


@dataclass(frozen=True)
class Error(_Event):
    message: str
    type: str = field(init=False, default="error")


SolverEvent = Union[Start, StepStart, VotingUpdate, StepComplete, Solved, Error]

EventSink = Callable[[Any], Awaitable[None]]


async def discard(event: Any) -> None:
    """Sink that ignores every event."""


def to_sse(event: _Event) -> str:
    """Format an event as one server-sent-events frame."""
    return f"data: {json.dumps(event.to_dict())}\n\n"


class ChannelClosed(Exception):
    pass


class EventChannel:
    """Bounded single-consumer queue of events.

    ``send`` waits while the queue is full, so a slow consumer applies
    backpressure to the solver and no event is ever dropped.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: Any) -> None:
        if self._closed:
            raise ChannelClosed("send on closed channel")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            # the consumer sees the close once it has drained the queue
            pass

    async def receive(self) -> Optional[Any]:
        """Next event, or ``None`` once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is self._CLOSED:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        while True:
            item = await self.receive()
            if item is None:
                return
            yield item
