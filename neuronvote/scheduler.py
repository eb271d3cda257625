"""Delayed vote queue and its execution sweep.

Per proposal: NONE -> SCHEDULED -> EXECUTED (success or failed), or
SCHEDULED -> NONE via cancel. EXECUTED is terminal: a failed cast is recorded
on the row and never retried automatically. Scheduling again after a terminal
row creates a fresh SCHEDULED row.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from . import db
from .config import settings
from .errors import describe_vote_error, error_text
from .events import EventType, emit
from .governance_client import GovernanceClient
from .models import ScheduledVote, Vote
from .neurons import resolve_voting_neuron
from .sync import store_proposal

logger = logging.getLogger(__name__)

# Scheduled vote ids being cast right now; overlapping sweeps skip them.
_in_flight: set[int] = set()


@dataclass
class SweepResult:
    executed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.executed) + len(self.failed)


@dataclass
class CastResult:
    success: bool
    outcome: str  # 'voted', 'already_voted', 'not_authorized', 'no_neuron', 'failed'
    message: str
    neuron_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome,
            "message": self.message,
            "neuron_id": str(self.neuron_id) if self.neuron_id is not None else None,
        }


def _now() -> int:
    return int(time.time())


async def ensure_proposal_exists(proposal_id: int) -> bool:
    """Placeholder safety net. Returns False only if the store could not be reached."""
    try:
        async with db.get_session() as session:
            if await db.ensure_proposal_exists(session, proposal_id):
                logger.warning(
                    "Created placeholder for proposal %s to prevent data loss", proposal_id
                )
        return True
    except Exception:
        logger.exception("Error creating placeholder for proposal %s", proposal_id)
        return False


# =============================================================================
# Queue Operations
# =============================================================================


async def schedule(
    proposal_id: int,
    direction: str | Vote,
    delay_seconds: int,
    *,
    now: int | None = None,
) -> ScheduledVote | None:
    """Schedule a vote ``delay_seconds`` from now, superseding any active one.

    Raises ValueError for an invalid direction or negative delay; storage
    failures are logged and return None.
    """
    vote = Vote.parse(direction)
    if vote is None:
        raise ValueError(f"Invalid vote direction {direction!r}. Must be 'yes' or 'no'")
    if delay_seconds < 0:
        raise ValueError("delay_seconds must be >= 0")

    current = now if now is not None else _now()
    await ensure_proposal_exists(proposal_id)

    try:
        async with db.get_session() as session:
            scheduled = await db.create_scheduled_vote(
                session, proposal_id, vote.value, current + delay_seconds
            )
    except Exception:
        logger.exception("Error scheduling vote for proposal %s", proposal_id)
        return None

    await emit(
        EventType.VOTE_SCHEDULED,
        proposal_id=proposal_id,
        message=f"Scheduled {vote.value} vote on proposal {proposal_id} in {delay_seconds}s",
        data=scheduled.to_dict(),
    )
    return scheduled


async def cancel(proposal_id: int) -> bool:
    """Delete the active scheduled vote. False if nothing was scheduled."""
    try:
        async with db.get_session() as session:
            deleted = await db.delete_active_scheduled_vote(session, proposal_id)
    except Exception:
        logger.exception("Error canceling scheduled vote for proposal %s", proposal_id)
        return False

    if deleted:
        await emit(
            EventType.VOTE_CANCELED,
            proposal_id=proposal_id,
            message=f"Canceled scheduled vote on proposal {proposal_id}",
        )
    return deleted > 0


async def get_active(proposal_id: int) -> ScheduledVote | None:
    try:
        async with db.get_session() as session:
            return await db.get_active_scheduled_vote(session, proposal_id)
    except Exception:
        logger.exception("Error retrieving scheduled vote for proposal %s", proposal_id)
        return None


async def history(proposal_id: int) -> list[ScheduledVote]:
    try:
        async with db.get_session() as session:
            return await db.get_scheduled_vote_history(session, proposal_id)
    except Exception:
        logger.exception("Error retrieving vote history for proposal %s", proposal_id)
        return []


async def due_votes(now: int | None = None) -> list[ScheduledVote]:
    try:
        async with db.get_session() as session:
            return await db.get_due_scheduled_votes(session, now if now is not None else _now())
    except Exception:
        logger.exception("Error retrieving pending votes")
        return []


async def mark_executed(
    vote_id: int, error: str | None = None, detail: str | None = None
) -> bool:
    """Terminalize a scheduled vote. A no-op (False) if it already executed."""
    try:
        async with db.get_session() as session:
            return await db.mark_scheduled_vote_executed(
                session, vote_id, error_message=error, error_detail=detail
            )
    except Exception:
        logger.exception("Error marking vote %s as executed", vote_id)
        return False


# =============================================================================
# Execution
# =============================================================================


async def refresh_proposal(client: GovernanceClient, proposal_id: int) -> bool:
    """Best-effort re-fetch; falls back to a placeholder so the row is never absent."""
    try:
        raw = await client.get_proposal(proposal_id)
        if raw:
            await store_proposal({**raw, "id": raw.get("id", proposal_id)})
            return True
        logger.error("Failed to refresh proposal %s: no proposal data returned", proposal_id)
    except Exception as exc:
        logger.error("Failed to refresh proposal %s: %s", proposal_id, exc)

    await ensure_proposal_exists(proposal_id)
    return False


async def _cast(client: GovernanceClient, neuron_id: int, proposal_id: int, vote: Vote) -> None:
    await asyncio.wait_for(
        client.register_vote(neuron_id=neuron_id, proposal_id=proposal_id, vote=vote),
        timeout=settings.vote_cast_timeout,
    )


async def _reload(vote_id: int) -> ScheduledVote | None:
    """Current state of a queued row, or None once it is canceled or executed."""
    async with db.get_session() as session:
        scheduled = await db.get_scheduled_vote(session, vote_id)
    if scheduled is None or scheduled.executed:
        return None
    return scheduled


async def _execute_one(client: GovernanceClient, neuron_id: int, snapshot: ScheduledVote, result: SweepResult) -> None:
    # The due list is stale once earlier casts have run. Cast what the row says now.
    scheduled = await _reload(snapshot.id)
    if scheduled is None:
        logger.info(
            "Scheduled vote %s on proposal %s was withdrawn before casting",
            snapshot.id,
            snapshot.proposal_id,
        )
        result.skipped.append(snapshot.id)
        return

    proposal_id = scheduled.proposal_id
    await ensure_proposal_exists(proposal_id)
    logger.info("Executing vote %s on proposal %s", scheduled.direction, proposal_id)

    try:
        await _cast(client, neuron_id, proposal_id, Vote(scheduled.direction))
    except Exception as exc:
        message, detail = describe_vote_error(exc)
        logger.error("Error executing vote on proposal %s: %s", proposal_id, message)
        if await mark_executed(scheduled.id, error=message, detail=detail):
            result.failed.append(scheduled.id)
            await emit(
                EventType.VOTE_FAILED,
                proposal_id=proposal_id,
                message=f"Vote {scheduled.direction} on proposal {proposal_id} failed: {message}",
                data={"scheduled_vote_id": scheduled.id, "error_detail": detail},
            )
    else:
        if await mark_executed(scheduled.id):
            result.executed.append(scheduled.id)
            await emit(
                EventType.VOTE_EXECUTED,
                proposal_id=proposal_id,
                message=f"Executed {scheduled.direction} vote on proposal {proposal_id}",
                data={"scheduled_vote_id": scheduled.id, "neuron_id": str(neuron_id)},
            )

    await refresh_proposal(client, proposal_id)


async def execute_due_votes(client: GovernanceClient, now: int | None = None) -> SweepResult:
    """Cast every vote that is due. Each row ends executed exactly once."""
    result = SweepResult()
    pending = [v for v in await due_votes(now) if v.id not in _in_flight]
    if not pending:
        return result

    logger.info("Processing %d pending votes", len(pending))
    try:
        neuron_id = await resolve_voting_neuron(client)
    except Exception:
        logger.exception("Could not resolve the voting neuron; votes stay pending")
        return result
    if neuron_id is None:
        result.skipped.extend(v.id for v in pending)
        return result

    for scheduled in pending:
        if scheduled.id in _in_flight:
            result.skipped.append(scheduled.id)
            continue
        _in_flight.add(scheduled.id)
        try:
            await _execute_one(client, neuron_id, scheduled, result)
        except Exception:
            # Includes a failed re-read; the row stays pending for the next sweep.
            logger.exception("Unexpected error executing scheduled vote %s", scheduled.id)
        finally:
            _in_flight.discard(scheduled.id)

    return result


async def cast_vote_now(client: GovernanceClient, proposal_id: int, direction: str | Vote) -> CastResult:
    """Cast immediately, bypassing the queue, and classify any rejection."""
    vote = Vote.parse(direction)
    if vote is None:
        raise ValueError(f"Invalid vote direction {direction!r}. Must be 'yes' or 'no'")

    await ensure_proposal_exists(proposal_id)
    try:
        neuron_id = await resolve_voting_neuron(client)
    except Exception as exc:
        logger.exception("Could not resolve the voting neuron")
        return CastResult(success=False, outcome="failed", message=str(exc))
    if neuron_id is None:
        return CastResult(
            success=False, outcome="no_neuron", message="No neurons found for this identity"
        )

    try:
        await _cast(client, neuron_id, proposal_id, vote)
    except Exception as exc:
        logger.error("Vote error on proposal %s: %s", proposal_id, exc)
        await refresh_proposal(client, proposal_id)
        text = error_text(exc).lower()
        if "already voted" in text:
            return CastResult(
                success=False,
                outcome="already_voted",
                message="Your neuron has already voted on this proposal",
                neuron_id=neuron_id,
            )
        if "not authorized" in text:
            return CastResult(
                success=False,
                outcome="not_authorized",
                message=(
                    "Your neuron is not authorized to vote on this proposal. This may be due "
                    "to insufficient voting power, neuron age, or dissolve delay."
                ),
                neuron_id=neuron_id,
            )
        return CastResult(
            success=False,
            outcome="failed",
            message=f"Failed to vote: {str(exc) or exc.__class__.__name__}",
            neuron_id=neuron_id,
        )

    # The cast supersedes whatever was queued for this proposal.
    await cancel(proposal_id)
    await refresh_proposal(client, proposal_id)
    return CastResult(
        success=True,
        outcome="voted",
        message=f"Successfully voted {vote.value} on proposal {proposal_id}",
        neuron_id=neuron_id,
    )
