import json

import pytest

from neuronvote import config_store, db, scheduler
from neuronvote.config import settings
from neuronvote.errors import GovernanceError
from neuronvote.models import Vote
from tests.fakes import NEURON_ID, FakeGovernance, build_proposal


@pytest.mark.asyncio
async def test_reschedule_replaces_active_vote(database: None) -> None:
    await scheduler.schedule(12345, "yes", 3600, now=1_000)
    await scheduler.schedule(12345, "no", 60, now=1_000)

    active = await scheduler.get_active(12345)
    assert active is not None
    assert active.direction == "no"
    assert active.scheduled_time == 1_060
    assert len(await scheduler.history(12345)) == 1

    async with db.get_session() as session:
        proposal = await db.get_proposal(session, 12345)
    assert proposal is not None
    assert proposal.placeholder


@pytest.mark.asyncio
async def test_schedule_rejects_invalid_direction(database: None) -> None:
    with pytest.raises(ValueError):
        await scheduler.schedule(1, "maybe", 60)
    with pytest.raises(ValueError):
        await scheduler.schedule(1, "yes", -1)
    assert await scheduler.get_active(1) is None


@pytest.mark.asyncio
async def test_cancel(database: None) -> None:
    assert not await scheduler.cancel(7)

    await scheduler.schedule(7, Vote.YES, 60)
    assert await scheduler.cancel(7)
    assert await scheduler.get_active(7) is None
    assert not await scheduler.cancel(7)


@pytest.mark.asyncio
async def test_due_vote_executes_exactly_once(database: None, governance: FakeGovernance) -> None:
    governance.add(build_proposal(1))
    scheduled = await scheduler.schedule(1, "yes", 0, now=100)
    assert scheduled is not None

    first = await scheduler.execute_due_votes(governance, now=200)
    second = await scheduler.execute_due_votes(governance, now=300)

    assert first.executed == [scheduled.id]
    assert second.total == 0
    assert governance.votes == [(NEURON_ID, 1, Vote.YES)]

    [row] = await scheduler.history(1)
    assert row.executed
    assert row.executed_time is not None
    assert row.error_message is None
    assert await config_store.get_config_value(config_store.USER_NEURON_ID) == str(NEURON_ID)

    # The proposal was refreshed from the network after the cast.
    async with db.get_session() as session:
        proposal = await db.get_proposal(session, 1)
    assert proposal is not None
    assert not proposal.placeholder


@pytest.mark.asyncio
async def test_mark_executed_is_a_noop_the_second_time(database: None) -> None:
    scheduled = await scheduler.schedule(3, "no", 0)
    assert scheduled is not None

    assert await scheduler.mark_executed(scheduled.id)
    assert not await scheduler.mark_executed(scheduled.id, error="late")

    [row] = await scheduler.history(3)
    assert row.error_message is None


@pytest.mark.asyncio
async def test_not_yet_due_votes_stay_pending(database: None, governance: FakeGovernance) -> None:
    await scheduler.schedule(5, "no", 3600, now=100)

    result = await scheduler.execute_due_votes(governance, now=200)

    assert result.total == 0
    assert governance.votes == []
    assert await scheduler.get_active(5) is not None


@pytest.mark.asyncio
async def test_rejected_cast_is_recorded_and_terminal(database: None, governance: FakeGovernance) -> None:
    governance.vote_errors[999] = GovernanceError(
        "not authorized",
        code=403,
        detail={"error_message": "Neuron not authorized to vote on proposal"},
    )
    scheduled = await scheduler.schedule(999, "yes", 0, now=100)
    assert scheduled is not None

    result = await scheduler.execute_due_votes(governance, now=200)
    again = await scheduler.execute_due_votes(governance, now=300)

    assert result.failed == [scheduled.id]
    assert again.total == 0

    [row] = await scheduler.history(999)
    assert row.executed
    assert row.failed
    assert row.error_message == "not authorized"
    detail = json.loads(row.error_detail or "{}")
    assert detail["type"] == "GovernanceError"
    assert detail["code"] == 403

    async with db.get_session() as session:
        assert await db.proposal_exists(session, 999)


@pytest.mark.asyncio
async def test_cast_timeout_is_a_failure(
    database: None, governance: FakeGovernance, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "vote_cast_timeout", 0.01)
    governance.vote_delay = 1.0
    await scheduler.schedule(8, "yes", 0, now=100)

    result = await scheduler.execute_due_votes(governance, now=200)

    assert len(result.failed) == 1
    [row] = await scheduler.history(8)
    assert row.error_message == "TimeoutError"


@pytest.mark.asyncio
async def test_votes_stay_pending_without_a_neuron(database: None, governance: FakeGovernance) -> None:
    governance.neurons = []
    scheduled = await scheduler.schedule(4, "yes", 0, now=100)
    assert scheduled is not None

    result = await scheduler.execute_due_votes(governance, now=200)

    assert result.skipped == [scheduled.id]
    assert await scheduler.get_active(4) is not None


@pytest.mark.asyncio
async def test_cached_neuron_is_used(database: None, governance: FakeGovernance) -> None:
    await config_store.set_config_value(config_store.USER_NEURON_ID, "4242")
    await scheduler.schedule(6, "no", 0, now=100)

    await scheduler.execute_due_votes(governance, now=200)

    assert governance.votes == [(4242, 6, Vote.NO)]


@pytest.mark.asyncio
async def test_cast_now_classifies_already_voted(database: None, governance: FakeGovernance) -> None:
    governance.vote_errors[11] = GovernanceError(
        "Governance API error 409", code=409, detail={"error_message": "Neuron already voted on proposal."}
    )

    result = await scheduler.cast_vote_now(governance, 11, "yes")

    assert not result.success
    assert result.outcome == "already_voted"
    async with db.get_session() as session:
        assert await db.proposal_exists(session, 11)


@pytest.mark.asyncio
async def test_cast_now_classifies_not_authorized(database: None, governance: FakeGovernance) -> None:
    governance.vote_errors[12] = GovernanceError("Neuron not authorized to vote")

    result = await scheduler.cast_vote_now(governance, 12, "no")

    assert result.outcome == "not_authorized"


@pytest.mark.asyncio
async def test_cast_now_success_supersedes_schedule(database: None, governance: FakeGovernance) -> None:
    await scheduler.schedule(13, "no", 3600)

    result = await scheduler.cast_vote_now(governance, 13, "YES")

    assert result.success
    assert result.outcome == "voted"
    assert governance.votes == [(NEURON_ID, 13, Vote.YES)]
    assert await scheduler.get_active(13) is None


@pytest.mark.asyncio
async def test_vote_canceled_during_sweep_is_not_cast(database: None, governance: FakeGovernance) -> None:
    first = await scheduler.schedule(1, "yes", 0, now=100)
    second = await scheduler.schedule(2, "no", 0, now=110)
    assert first is not None and second is not None

    async def cancel_second(proposal_id: int) -> None:
        if proposal_id == 1:
            assert await scheduler.cancel(2)

    governance.on_vote = cancel_second
    result = await scheduler.execute_due_votes(governance, now=200)

    assert governance.votes == [(NEURON_ID, 1, Vote.YES)]
    assert result.executed == [first.id]
    assert result.skipped == [second.id]
    assert await scheduler.history(2) == []


@pytest.mark.asyncio
async def test_vote_rescheduled_during_sweep_uses_new_direction(
    database: None, governance: FakeGovernance
) -> None:
    await scheduler.schedule(1, "yes", 0, now=100)
    await scheduler.schedule(2, "no", 0, now=110)

    async def flip_second(proposal_id: int) -> None:
        if proposal_id == 1:
            await scheduler.schedule(2, "yes", 0, now=150)

    governance.on_vote = flip_second
    await scheduler.execute_due_votes(governance, now=200)
    assert governance.votes == [(NEURON_ID, 1, Vote.YES)]

    governance.on_vote = None
    await scheduler.execute_due_votes(governance, now=300)
    assert governance.votes == [(NEURON_ID, 1, Vote.YES), (NEURON_ID, 2, Vote.YES)]
    [row] = await scheduler.history(2)
    assert row.direction == "yes"
    assert row.executed
