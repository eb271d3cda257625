import asyncio

import pytest

from neuronvote import config_store, db
from neuronvote.analysis import AnalysisPipeline
from neuronvote.service import ProposalService
from neuronvote.sync import store_proposal
from tests.fakes import NEURON_ID, FakeGovernance, FakeReasoning, build_proposal, review_output


@pytest.fixture
def service(governance: FakeGovernance, reasoning: FakeReasoning) -> ProposalService:
    return ProposalService(governance, AnalysisPipeline(reasoning))


@pytest.mark.asyncio
async def test_list_proposals_paginates_and_filters(database: None, service: ProposalService) -> None:
    for i in range(1, 6):
        await store_proposal(build_proposal(i))
    async with db.get_session() as session:
        await db.mark_proposal_processed(session, 2)

    page = await service.list_proposals(page=1, limit=2)
    assert page["status"] == "success"
    assert [p["id"] for p in page["proposals"]] == ["5", "4"]
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}

    processed = await service.list_proposals(status="processed")
    assert [p["id"] for p in processed["proposals"]] == ["2"]

    unprocessed = await service.list_proposals(status="unprocessed")
    assert unprocessed["pagination"]["total"] == 4

    assert (await service.list_proposals(status="pending"))["status"] == "error"


@pytest.mark.asyncio
async def test_get_proposal(database: None, service: ProposalService) -> None:
    await store_proposal(build_proposal(7, title="Upgrade"))

    found = await service.get_proposal("7")
    assert found["proposal"]["proposal"]["title"] == "Upgrade"

    missing = await service.get_proposal(8)
    assert missing["status"] == "error"
    assert (await service.get_proposal("abc"))["status"] == "error"


@pytest.mark.asyncio
async def test_schedule_uses_configured_delay(database: None, service: ProposalService) -> None:
    await config_store.set_config_value(config_store.VOTE_SCHEDULE_DELAY, "300")

    result = await service.schedule_vote(15, "Yes")

    assert result["status"] == "success"
    vote = result["scheduled_vote"]
    assert vote["direction"] == "yes"
    assert vote["proposal_id"] == "15"
    assert (await service.get_proposal(15))["proposal"]["placeholder"] is True

    status = await service.get_scheduled_vote(15)
    assert status["scheduled_vote"]["id"] == vote["id"]


@pytest.mark.asyncio
async def test_schedule_invalid_direction(database: None, service: ProposalService) -> None:
    result = await service.schedule_vote(15, "abstain", 60)
    assert result["status"] == "error"


@pytest.mark.asyncio
async def test_cancel_without_schedule_is_noop(database: None, service: ProposalService) -> None:
    result = await service.cancel_vote(16)
    assert result["status"] == "success"
    assert result["canceled"] is False

    await service.schedule_vote(16, "no", 60)
    assert (await service.cancel_vote(16))["canceled"] is True
    assert (await service.vote_history(16))["history"] == []


@pytest.mark.asyncio
async def test_cast_vote_reports_outcome(
    database: None, service: ProposalService, governance: FakeGovernance
) -> None:
    result = await service.cast_vote(17, "no")

    assert result["status"] == "success"
    assert result["outcome"] == "voted"
    assert result["neuron_id"] == str(NEURON_ID)
    assert (await service.cast_vote(17, "perhaps"))["status"] == "error"


@pytest.mark.asyncio
async def test_trigger_analysis_resets_and_runs_in_background(
    database: None, service: ProposalService, reasoning: FakeReasoning
) -> None:
    await store_proposal(build_proposal(42))
    async with db.get_session() as session:
        await db.replace_agent_vote(session, 42, "no", "stale")
    reasoning.outputs.append(review_output("yes", "fresh"))

    started = await service.trigger_analysis(42)
    assert started["status"] == "success"
    assert started["reset"]["agent_votes"] == 1

    await service.drain()

    vote = await service.get_agent_vote(42)
    assert vote["agent_vote"]["direction"] == "yes"
    assert vote["agent_vote"]["reasoning"] == "fresh"
    logs = await service.get_agent_logs(42)
    assert len(logs["logs"]) == 2
    assert (await service.get_scheduled_vote(42))["scheduled_vote"]["direction"] == "yes"


@pytest.mark.asyncio
async def test_trigger_analysis_while_busy(
    database: None, service: ProposalService, reasoning: FakeReasoning
) -> None:
    await store_proposal(build_proposal(43))
    await store_proposal(build_proposal(44))
    reasoning.gate = asyncio.Event()

    assert (await service.trigger_analysis(43))["status"] == "success"
    async with asyncio.timeout(5):
        while not reasoning.prompts:
            await asyncio.sleep(0.01)

    assert (await service.trigger_analysis(44))["status"] == "busy"

    reasoning.gate.set()
    await service.drain()
    waited = await service.wait_for_analysis(43, attempts=1, interval=0.01)
    assert waited["agent_vote"]["proposal_id"] == "43"


@pytest.mark.asyncio
async def test_trigger_analysis_unknown_proposal_gets_placeholder(
    database: None, service: ProposalService, reasoning: FakeReasoning
) -> None:
    result = await service.trigger_analysis(404)
    assert result["status"] == "success"
    await service.drain()

    proposal = (await service.get_proposal(404))["proposal"]
    assert proposal["placeholder"] is True
    assert "PROPOSAL ID: 404" in reasoning.prompts[0]
    assert (await service.trigger_analysis("abc"))["status"] == "error"


@pytest.mark.asyncio
async def test_agent_votes_listing(database: None, service: ProposalService) -> None:
    async with db.get_session() as session:
        await db.replace_agent_vote(session, 1, "yes", "a", created_at=100)
        await db.replace_agent_vote(session, 2, "no", "b", created_at=200)

    result = await service.list_agent_votes(page=1, limit=1)
    assert [v["proposal_id"] for v in result["agent_votes"]] == ["2"]

    result = await service.list_agent_votes(page=2, limit=1)
    assert [v["proposal_id"] for v in result["agent_votes"]] == ["1"]


@pytest.mark.asyncio
async def test_config_and_neuron(database: None, service: ProposalService) -> None:
    assert (await service.set_config(config_store.VOTE_SCHEDULE_DELAY, "-5"))["status"] == "error"
    assert (await service.set_config(config_store.VOTE_SCHEDULE_DELAY, "90"))["status"] == "success"
    assert (await service.get_config(config_store.VOTE_SCHEDULE_DELAY))["value"] == "90"

    assert (await service.get_user_neuron())["neuron_id"] is None
    assert (await service.set_user_neuron("12x"))["status"] == "error"
    assert (await service.set_user_neuron(555))["status"] == "success"
    assert (await service.get_user_neuron())["neuron_id"] == "555"


@pytest.mark.asyncio
async def test_sync_cutoff_can_only_be_lowered(database: None, service: ProposalService) -> None:
    key = config_store.MINIMUM_PROPOSAL_ID
    assert (await service.set_config(key, "500"))["status"] == "success"

    raised = await service.set_config(key, "999999")
    assert raised["status"] == "error"
    assert await config_store.get_minimum_proposal_id() == 500

    assert (await service.set_config(key, "not-a-number"))["status"] == "error"
    assert (await service.set_config(key, "11"))["status"] == "success"
    assert await config_store.get_minimum_proposal_id() == 11


@pytest.mark.asyncio
async def test_set_config_validates_neuron_id(database: None, service: ProposalService) -> None:
    key = config_store.USER_NEURON_ID
    assert (await service.set_config(key, "abc"))["status"] == "error"
    assert await config_store.get_config_value(key) is None

    assert (await service.set_config(key, " 123 "))["status"] == "success"
    assert await config_store.get_config_value(key) == "123"
