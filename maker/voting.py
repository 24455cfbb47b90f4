"""First-to-ahead-by-k voting over oracle proposals for a single step.

The engine keeps sampling the oracle until one candidate leads the
runner-up by ``k`` votes, or until ``max_attempts`` calls were made, in
which case the plurality leader wins. Malformed and illegal proposals are
red-flagged and never reach the tally.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import VotingConfig
from .domain import Candidate, Fingerprint, Rejection, WorldModel, fingerprint
from .errors import OracleTransportError
from .events import Decision, EventSink, VoteCast, VoteProgress, VoteRejected, discard
from .llm_clients import Oracle, OracleResponse

logger = logging.getLogger(__name__)

CONSENSUS = "consensus"
MAX_VOTES = "max_votes"


@dataclass
class TallyEntry:
    count: int
    representative: Candidate


class VoteTally:
    """Vote counts per fingerprint, in first-seen order.

    Counts never decrease. The leader is the highest count; among equal
    counts the fingerprint seen first wins.
    """

    def __init__(self) -> None:
        self._entries: Dict[Fingerprint, TallyEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[Fingerprint, TallyEntry]]:
        return iter(self._entries.items())

    def add(self, key: Fingerprint, candidate: Candidate) -> int:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = TallyEntry(count=0, representative=candidate)
        entry.count += 1
        return entry.count

    def count(self, key: Fingerprint) -> int:
        entry = self._entries.get(key)
        return entry.count if entry else 0

    def leader(self) -> Optional[Tuple[Fingerprint, TallyEntry]]:
        best: Optional[Tuple[Fingerprint, TallyEntry]] = None
        for key, entry in self._entries.items():
            if best is None or entry.count > best[1].count:
                best = (key, entry)
        return best

    def standings(self) -> Tuple[Optional[Fingerprint], int, int]:
        """Return ``(leader, leader_count, second_count)``."""
        top = self.leader()
        if top is None:
            return None, 0, 0
        leader_key, leader_entry = top
        second = max(
            (e.count for k, e in self._entries.items() if k != leader_key),
            default=0,
        )
        return leader_key, leader_entry.count, second

    def to_dict(self) -> Dict[str, int]:
        return {" ".join(key): entry.count for key, entry in self._entries.items()}


@dataclass
class VoteOutcome:
    """What one voting round produced."""

    decision: Optional[Candidate]
    reason: Optional[str]
    attempts: int
    oracle_calls: int
    tally: VoteTally = field(default_factory=VoteTally)

    @property
    def decided(self) -> bool:
        return self.decision is not None


class VotingEngine:
    """Runs the consensus protocol for one step.

    Parameters
    ----------
    world:
        Domain used to parse, validate and fingerprint proposals.
    config:
        Margin ``k``, attempt cap, sampling temperatures, transport retry
        policy and wave size.
    emit:
        Async sink receiving every vote event in order.

    With ``parallel_samples > 1`` calls are issued in concurrent waves, but
    their results are still counted one by one in attempt order, so the
    outcome is the same as sampling sequentially. Results of a wave that
    arrive after the decision are discarded.
    """

    def __init__(
        self,
        world: WorldModel,
        config: VotingConfig,
        emit: EventSink = discard,
    ) -> None:
        self.world = world
        self.config = config
        self.emit = emit

    # ------------------------------------------------------------------ oracle

    async def _sample(
        self,
        oracle: Oracle,
        system_prompt: str,
        user_prompt: str,
        attempt_index: int,
    ) -> OracleResponse:
        """Call the oracle, retrying transport failures with backoff."""
        temperature = self.config.temperature_for(attempt_index)
        retries = self.config.transport_retries
        for retry in range(retries + 1):
            try:
                return await oracle.call(system_prompt, user_prompt, temperature)
            except OracleTransportError as e:
                if retry == retries:
                    logger.error(
                        "Oracle unreachable after %d retries on attempt %d: %s",
                        retries,
                        attempt_index + 1,
                        e,
                    )
                    raise
                delay = self.config.transport_backoff * (2 ** retry)
                logger.warning(
                    "Oracle transport error on attempt %d (retry %d/%d in %.2fs): %s",
                    attempt_index + 1,
                    retry + 1,
                    retries,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _sample_wave(
        self,
        oracle: Oracle,
        system_prompt: str,
        user_prompt: str,
        first_index: int,
        size: int,
    ) -> List[OracleResponse]:
        if size == 1:
            return [await self._sample(oracle, system_prompt, user_prompt, first_index)]

        tasks = [
            asyncio.ensure_future(
                self._sample(oracle, system_prompt, user_prompt, first_index + i)
            )
            for i in range(size)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # ------------------------------------------------------------------ voting

    async def _count(
        self,
        tally: VoteTally,
        response: OracleResponse,
        attempt: int,
        current_state: Any,
    ) -> bool:
        """Parse one response into the tally; return True on consensus."""
        raw = response.text
        parsed = self.world.parse_candidate(raw, current_state)

        if isinstance(parsed, Rejection):
            logger.debug("Red-flagged attempt %d: %s", attempt, parsed)
            await self.emit(
                VoteRejected(
                    raw=raw, reason=parsed, attempt=attempt, tokens=response.token_count
                )
            )
            return False

        await self.emit(
            VoteCast(
                candidate=parsed, raw=raw, attempt=attempt, tokens=response.token_count
            )
        )
        tally.add(fingerprint(self.world, parsed), parsed)

        leader, leader_count, second_count = tally.standings()
        margin = leader_count - second_count
        await self.emit(
            VoteProgress(
                attempts=attempt,
                leader=leader,
                leader_count=leader_count,
                second_count=second_count,
                margin=margin,
            )
        )
        return margin >= self.config.k

    async def run(
        self,
        oracle: Oracle,
        system_prompt: str,
        user_prompt: str,
        current_state: Any,
    ) -> VoteOutcome:
        cfg = self.config
        tally = VoteTally()
        attempts = 0
        oracle_calls = 0

        while attempts < cfg.max_attempts:
            # cancellation checkpoint before each attempt or wave
            await asyncio.sleep(0)
            size = min(cfg.parallel_samples, cfg.max_attempts - attempts)
            responses = await self._sample_wave(
                oracle, system_prompt, user_prompt, attempts, size
            )
            oracle_calls += size

            for response in responses:
                attempts += 1
                if await self._count(tally, response, attempts, current_state):
                    top = tally.leader()
                    assert top is not None
                    winner = top[1].representative
                    logger.info(
                        "Consensus after %d attempts (margin >= %d)", attempts, cfg.k
                    )
                    await self.emit(Decision(result=winner, reason=CONSENSUS))
                    return VoteOutcome(winner, CONSENSUS, attempts, oracle_calls, tally)

        top = tally.leader()
        if top is None:
            logger.warning("All %d attempts were red-flagged", attempts)
            return VoteOutcome(None, None, attempts, oracle_calls, tally)

        winner = top[1].representative
        logger.info(
            "No consensus after %d attempts, falling back to leader with %d votes",
            attempts,
            top[1].count,
        )
        await self.emit(Decision(result=winner, reason=MAX_VOTES))
        return VoteOutcome(winner, MAX_VOTES, attempts, oracle_calls, tally)
