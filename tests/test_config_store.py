import pytest

from neuronvote import config_store
from neuronvote.config import settings


@pytest.mark.asyncio
async def test_defaults_seeded_without_overwriting(database: None) -> None:
    await config_store.set_config_value(config_store.USER_PROMPT, "Vote yes on everything.")

    inserted = await config_store.ensure_config_defaults()

    assert config_store.USER_PROMPT not in inserted
    assert config_store.VOTE_SCHEDULE_DELAY in inserted
    assert await config_store.get_config_value(config_store.USER_PROMPT) == "Vote yes on everything."
    assert await config_store.ensure_config_defaults() == []


@pytest.mark.asyncio
async def test_get_config_value_falls_back_to_default(database: None) -> None:
    assert await config_store.get_config_value(config_store.USER_PROMPT) == config_store.DEFAULT_USER_PROMPT
    assert await config_store.get_config_value(config_store.OPENAI_KEY) is None
    assert await config_store.get_config_value("unknown") is None


@pytest.mark.asyncio
async def test_vote_delay(database: None) -> None:
    assert await config_store.get_vote_delay() == settings.default_vote_delay_seconds

    await config_store.set_config_value(config_store.VOTE_SCHEDULE_DELAY, " 120 ")
    assert await config_store.get_vote_delay() == 120

    await config_store.set_config_value(config_store.VOTE_SCHEDULE_DELAY, "soon")
    assert await config_store.get_vote_delay() == settings.default_vote_delay_seconds


@pytest.mark.asyncio
async def test_minimum_proposal_id_only_lowers(database: None) -> None:
    assert await config_store.get_minimum_proposal_id() is None

    assert await config_store.update_minimum_proposal_id(500)
    assert not await config_store.update_minimum_proposal_id(600)
    assert not await config_store.update_minimum_proposal_id(500)
    assert await config_store.get_minimum_proposal_id() == 500

    assert await config_store.update_minimum_proposal_id(400)
    assert await config_store.get_minimum_proposal_id() == 400
