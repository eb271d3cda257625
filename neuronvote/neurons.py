"""Voting neuron selection and dissolve-delay upkeep."""

from __future__ import annotations

import logging

from . import config_store
from .config import settings
from .governance_client import GovernanceClient

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


async def resolve_voting_neuron(client: GovernanceClient) -> int | None:
    """Return the neuron that casts votes.

    Uses the cached ``user_neuron_id`` when set; otherwise picks the first
    neuron controlled by the identity and caches it.
    """
    cached = await config_store.get_config_value(config_store.USER_NEURON_ID)
    if cached:
        try:
            return int(cached)
        except ValueError:
            logger.warning("Ignoring malformed cached neuron id %r", cached)

    neurons = await client.list_neurons()
    if not neurons:
        logger.error("No neurons found for this identity, cannot vote")
        return None

    neuron_id = neurons[0].neuron_id
    await config_store.set_config_value(config_store.USER_NEURON_ID, str(neuron_id))
    logger.info("Using neuron ID %s", neuron_id)
    return neuron_id


async def ensure_minimum_dissolve_delay(client: GovernanceClient) -> list[int]:
    """Top up every neuron below the minimum dissolve delay. Returns the neurons increased."""
    increased: list[int] = []
    minimum = settings.minimum_dissolve_delay_seconds
    try:
        neurons = await client.list_neurons()
        if not neurons:
            logger.warning("No neurons found for this identity")
            return increased

        for neuron in neurons:
            current = neuron.dissolve_delay_seconds
            logger.info(
                "Neuron %s has a dissolve delay of %.1f days",
                neuron.neuron_id,
                current / SECONDS_PER_DAY,
            )
            if current >= minimum:
                continue

            additional = minimum - current
            await client.increase_dissolve_delay(
                neuron_id=neuron.neuron_id, additional_seconds=additional
            )
            increased.append(neuron.neuron_id)
            logger.info(
                "Increased dissolve delay for neuron %s by %.1f days",
                neuron.neuron_id,
                additional / SECONDS_PER_DAY,
            )
    except Exception:
        logger.exception("Error checking/updating dissolve delay")
    return increased
