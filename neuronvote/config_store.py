"""Durable key/value configuration stored alongside proposals.

Priority for a key: value stored in the ``config`` table > documented default.
Defaults with a value are seeded on ``ensure_config_defaults()`` without
overwriting anything an operator already set.
"""

from __future__ import annotations

import logging

from . import db
from .config import settings

logger = logging.getLogger(__name__)

USER_PROMPT = "USER_PROMPT"
VOTE_SCHEDULE_DELAY = "VOTE_SCHEDULE_DELAY"
OPENAI_KEY = "OPENAI_KEY"
GOVERNANCE_AUTH_KEY = "GOVERNANCE_AUTH_KEY"
MINIMUM_PROPOSAL_ID = "minimum_proposal_id"
USER_NEURON_ID = "user_neuron_id"

DEFAULT_USER_PROMPT = """Consider:
1. Technical implications for the network
2. Security risks and mitigations
3. Governance precedents being set
4. Economic impacts
5. Alignment with the network's long-term vision
Directive:
Vote no on adding new node providers. Vote yes on removing node providers.
Vote no on changing tokenomics parameters.
Vote no on proposals changing code and managing canisters.
Vote yes on proposals moving nodes in and out of subnets proposed by the foundation.
Vote no on ExecuteNnsFunction actions not proposed by the foundation.
"""

DEFAULT_CONFIG: dict[str, str | None] = {
    USER_PROMPT: DEFAULT_USER_PROMPT,
    VOTE_SCHEDULE_DELAY: str(settings.default_vote_delay_seconds),
    GOVERNANCE_AUTH_KEY: "",
    OPENAI_KEY: None,
    MINIMUM_PROPOSAL_ID: None,
    USER_NEURON_ID: None,
}


async def ensure_config_defaults() -> list[str]:
    """Seed default values for missing keys. Returns the keys that were inserted."""
    inserted: list[str] = []
    async with db.get_session() as session:
        for key, value in DEFAULT_CONFIG.items():
            if value is None:
                continue
            if await db.insert_config_default(session, key, value):
                logger.info("Setting default configuration for %s", key)
                inserted.append(key)
    return inserted


async def get_config_value(key: str) -> str | None:
    """Read a config value, falling back to the documented default."""
    async with db.get_session() as session:
        value = await db.get_config_entry(session, key)
    if value is None:
        return DEFAULT_CONFIG.get(key)
    return value


async def set_config_value(key: str, value: str) -> None:
    async with db.get_session() as session:
        await db.upsert_config_entry(session, key, value)


async def get_vote_delay() -> int:
    """Configured delay between a recommendation and its cast, in seconds."""
    raw = await get_config_value(VOTE_SCHEDULE_DELAY)
    try:
        delay = int(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r; using default", VOTE_SCHEDULE_DELAY, raw)
        return settings.default_vote_delay_seconds
    return max(delay, 0)


async def get_minimum_proposal_id() -> int | None:
    raw = await get_config_value(MINIMUM_PROPOSAL_ID)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s value %r", MINIMUM_PROPOSAL_ID, raw)
        return None


async def update_minimum_proposal_id(proposal_id: int) -> bool:
    """Lower the sync cutoff to ``proposal_id``. The cutoff never increases."""
    current = await get_minimum_proposal_id()
    if current is not None and proposal_id >= current:
        return False
    await set_config_value(MINIMUM_PROPOSAL_ID, str(proposal_id))
    return True
