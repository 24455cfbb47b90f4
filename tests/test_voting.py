import asyncio

import pytest

from conftest import CounterWorld, EventLog, ScriptedOracle, SlowOracle
from maker.config import VotingConfig
from maker.domain import Candidate
from maker.errors import OracleTransportError
from maker.events import Decision, VoteCast, VoteProgress, VoteRejected
from maker.voting import CONSENSUS, MAX_VOTES, VoteTally, VotingEngine

A = "step = +1"
B = "step = +2"
C = "step = +3"
BAD = "I think we should go up a bit"
ILLEGAL = "step = +7"


def engine(events, **cfg):
    cfg.setdefault("transport_backoff", 0.0)
    return VotingEngine(CounterWorld(), VotingConfig(**cfg), emit=events)


async def vote(eng, oracle, state=0):
    return await eng.run(oracle, "sys", "user", state)


@pytest.mark.asyncio
async def test_consensus_stops_sampling(events):
    oracle = ScriptedOracle([A, A, B, A, A])
    outcome = await vote(engine(events, k=2, max_attempts=5), oracle)

    assert outcome.reason == CONSENSUS
    assert outcome.decision.move == 1
    assert outcome.attempts == 2
    assert len(oracle.calls) == 2
    assert events.types == [
        "vote_cast",
        "vote_progress",
        "vote_cast",
        "vote_progress",
        "decision",
    ]


@pytest.mark.asyncio
async def test_consensus_after_split_vote(events):
    oracle = ScriptedOracle([A, B, A, A, B])
    outcome = await vote(engine(events, k=2, max_attempts=5), oracle)

    margins = [e.margin for e in events.events if isinstance(e, VoteProgress)]
    assert margins == [1, 0, 1, 2]
    assert outcome.reason == CONSENSUS
    assert outcome.attempts == 4
    assert len(oracle.calls) == 4
    assert outcome.tally.count(("+1", "1")) == 3
    assert outcome.tally.count(("+2", "2")) == 1


@pytest.mark.asyncio
async def test_max_votes_falls_back_to_first_inserted(events):
    oracle = ScriptedOracle([A, B, C])
    outcome = await vote(engine(events, k=3, max_attempts=3), oracle)

    assert outcome.reason == MAX_VOTES
    assert outcome.decision.move == 1
    assert outcome.attempts == 3
    decision = events.events[-1]
    assert isinstance(decision, Decision)
    assert decision.reason == "max_votes"
    assert decision.result.move == 1


@pytest.mark.asyncio
async def test_max_votes_prefers_higher_count_over_insertion(events):
    oracle = ScriptedOracle([A, B, B, C])
    outcome = await vote(engine(events, k=3, max_attempts=4), oracle)

    assert outcome.reason == MAX_VOTES
    assert outcome.decision.move == 2


@pytest.mark.asyncio
async def test_every_attempt_rejected_yields_no_decision(events):
    oracle = ScriptedOracle([BAD] * 10)
    outcome = await vote(engine(events, k=2, max_attempts=10), oracle)

    assert outcome.decision is None
    assert outcome.reason is None
    assert outcome.attempts == 10
    assert len(outcome.tally) == 0
    assert events.types == ["vote_rejected"] * 10
    assert [e.attempt for e in events.events] == list(range(1, 11))


@pytest.mark.asyncio
async def test_rejections_consume_budget_without_touching_tally(events):
    oracle = ScriptedOracle([BAD, A, ILLEGAL])
    outcome = await vote(engine(events, k=2, max_attempts=3), oracle)

    assert outcome.attempts == 3
    assert outcome.reason == MAX_VOTES
    assert outcome.tally.count(("+1", "1")) == 1
    rejected = [e for e in events.events if isinstance(e, VoteRejected)]
    assert [r.reason.kind for r in rejected] == ["malformed", "illegal_move"]
    assert [r.attempt for r in rejected] == [1, 3]
    assert rejected[0].raw == BAD


@pytest.mark.asyncio
async def test_same_move_and_state_with_different_text_is_one_vote(events):
    oracle = ScriptedOracle(["first try: step = +1", "obviously step=+1 again"])
    outcome = await vote(engine(events, k=2, max_attempts=5), oracle)

    assert outcome.reason == CONSENSUS
    assert len(outcome.tally) == 1
    # the first candidate seen stays the representative
    assert outcome.decision.raw_text == "first try: step = +1"
    casts = [e for e in events.events if isinstance(e, VoteCast)]
    assert [c.raw for c in casts] == ["first try: step = +1", "obviously step=+1 again"]


@pytest.mark.asyncio
async def test_first_attempt_uses_low_temperature(events):
    oracle = ScriptedOracle([A, B, C])
    await vote(
        engine(events, k=3, max_attempts=3, first_temperature=0.0, temperature=0.7),
        oracle,
    )

    assert [c["temperature"] for c in oracle.calls] == [0.0, 0.7, 0.7]


@pytest.mark.asyncio
async def test_transport_errors_do_not_consume_budget(events):
    oracle = ScriptedOracle(
        [OracleTransportError("rate limited"), A, OracleTransportError("timeout"), A]
    )
    outcome = await vote(engine(events, k=2, max_attempts=2, transport_retries=2), oracle)

    assert outcome.reason == CONSENSUS
    assert outcome.attempts == 2
    assert len(oracle.calls) == 4
    # a retried call keeps its attempt's temperature
    assert [c["temperature"] for c in oracle.calls] == [0.0, 0.0, 0.1, 0.1]


@pytest.mark.asyncio
async def test_transport_retry_cap_escalates(events):
    oracle = ScriptedOracle([OracleTransportError("down")] * 3)

    with pytest.raises(OracleTransportError):
        await vote(engine(events, k=2, max_attempts=5, transport_retries=2), oracle)

    assert len(oracle.calls) == 3
    assert events.events == []


@pytest.mark.asyncio
async def test_parallel_waves_match_sequential_outcome(events):
    script = [A, B, A, A, B, C]
    sequential = await vote(
        engine(events, k=2, max_attempts=6), ScriptedOracle(list(script))
    )
    sequential_types = events.types

    events.events.clear()
    oracle = ScriptedOracle(list(script))
    waved = await vote(engine(events, k=2, max_attempts=6, parallel_samples=3), oracle)

    assert waved.decision == sequential.decision
    assert waved.reason == sequential.reason == CONSENSUS
    assert waved.attempts == sequential.attempts == 4
    assert events.types == sequential_types
    # the second wave was issued in full, its last result discarded
    assert waved.oracle_calls == 6
    assert len(oracle.calls) == 6


@pytest.mark.asyncio
async def test_parallel_wave_is_capped_by_remaining_budget(events):
    oracle = ScriptedOracle([A, B, C, BAD])
    outcome = await vote(engine(events, k=3, max_attempts=4, parallel_samples=3), oracle)

    assert outcome.oracle_calls == 4
    assert outcome.attempts == 4
    assert outcome.reason == MAX_VOTES


@pytest.mark.asyncio
async def test_cancelling_a_wave_cancels_every_pending_call(events):
    oracle = SlowOracle([A, A, A])
    eng = engine(events, k=2, max_attempts=3, parallel_samples=3)

    task = asyncio.ensure_future(vote(eng, oracle))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert oracle.cancelled == 3
    assert oracle.calls == []
    assert events.events == []


@pytest.mark.asyncio
async def test_transport_escalation_in_wave_cancels_siblings(events):
    oracle = SlowOracle([OracleTransportError("down"), A, A])
    eng = engine(events, k=2, max_attempts=3, parallel_samples=3, transport_retries=0)

    with pytest.raises(OracleTransportError):
        await vote(eng, oracle)

    assert oracle.cancelled == 2
    assert len(oracle.calls) == 1
    assert events.events == []


@pytest.mark.asyncio
async def test_cancel_between_attempts_stops_sampling():
    log = EventLog()

    async def cancel_after_first_vote(event):
        await log(event)
        if isinstance(event, VoteCast):
            asyncio.current_task().cancel()

    oracle = ScriptedOracle([A, A, A])
    eng = VotingEngine(
        CounterWorld(), VotingConfig(k=2, max_attempts=3), emit=cancel_after_first_vote
    )

    task = asyncio.ensure_future(vote(eng, oracle))
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(oracle.calls) == 1
    assert log.types == ["vote_cast", "vote_progress"]


def _candidate(move, state):
    return Candidate(move=move, resulting_state=state, rationale="", raw_text=str(move))


def test_vote_tally_standings_and_ties():
    tally = VoteTally()
    assert tally.leader() is None
    assert tally.standings() == (None, 0, 0)

    tally.add(("b", "1"), _candidate("b", 1))
    tally.add(("a", "1"), _candidate("a", 1))
    assert tally.standings() == (("b", "1"), 1, 1)

    tally.add(("a", "1"), _candidate("a", 1))
    assert tally.standings() == (("a", "1"), 2, 1)
    assert tally.leader()[1].representative.move == "a"
    assert tally.to_dict() == {"b 1": 1, "a 1": 2}
