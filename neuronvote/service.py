"""Operator-facing operations returning ``{status, message, ...}`` dicts."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from . import analysis, config_store, db, scheduler
from .analysis import AnalysisPipeline
from .ballots import parse_proposal_id
from .governance_client import GovernanceClient

logger = logging.getLogger(__name__)

PROPOSAL_FILTERS = ("all", "processed", "unprocessed")


def _ok(message: str = "", **extra: Any) -> dict[str, Any]:
    return {"status": "success", "message": message, **extra}


def _error(message: str, **extra: Any) -> dict[str, Any]:
    return {"status": "error", "message": message, **extra}


class ProposalService:
    """Read and control operations over the local store and the running agent."""

    def __init__(self, governance: GovernanceClient, pipeline: AnalysisPipeline | None = None) -> None:
        self.governance = governance
        self.pipeline = pipeline or AnalysisPipeline()
        self._background: set[asyncio.Task[Any]] = set()

    async def drain(self) -> None:
        """Wait for background analyses started by ``trigger_analysis``."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Proposals
    # =========================================================================

    async def list_proposals(
        self, *, page: int = 1, limit: int = 20, status: str = "all"
    ) -> dict[str, Any]:
        if status not in PROPOSAL_FILTERS:
            return _error(f"Invalid status filter {status!r}; use one of {', '.join(PROPOSAL_FILTERS)}")
        if page < 1 or limit < 1:
            return _error("page and limit must be positive")

        processed = None if status == "all" else status == "processed"
        try:
            async with db.get_session() as session:
                total = await db.count_proposals(session, processed=processed)
                rows = await db.list_proposals(
                    session, limit=limit, offset=(page - 1) * limit, processed=processed
                )
        except Exception as exc:
            logger.exception("Error listing proposals")
            return _error(f"Error listing proposals: {exc}")

        return _ok(
            f"{len(rows)} proposals",
            proposals=[p.to_dict() for p in rows],
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        )

    async def get_proposal(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        try:
            async with db.get_session() as session:
                proposal = await db.get_proposal(session, pid)
        except Exception as exc:
            logger.exception("Error retrieving proposal %s", pid)
            return _error(f"Error retrieving proposal: {exc}")
        if proposal is None:
            return _error(f"Proposal {pid} not found")
        return _ok(proposal=proposal.to_dict())

    # =========================================================================
    # Votes
    # =========================================================================

    async def schedule_vote(
        self, proposal_id: Any, direction: str, delay_seconds: int | None = None
    ) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        delay = delay_seconds if delay_seconds is not None else await config_store.get_vote_delay()
        try:
            scheduled = await scheduler.schedule(pid, direction, delay)
        except ValueError as exc:
            return _error(str(exc))
        if scheduled is None:
            return _error(f"Failed to schedule vote for proposal {pid}")
        return _ok(
            f"Scheduled {scheduled.direction} vote for proposal {pid}",
            scheduled_vote=scheduled.to_dict(),
        )

    async def cancel_vote(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        if await scheduler.cancel(pid):
            return _ok(f"Canceled scheduled vote for proposal {pid}", canceled=True)
        return _ok(f"No scheduled vote for proposal {pid}", canceled=False)

    async def get_scheduled_vote(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        vote = await scheduler.get_active(pid)
        return _ok(scheduled_vote=vote.to_dict() if vote else None)

    async def vote_history(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        rows = await scheduler.history(pid)
        return _ok(f"{len(rows)} scheduled votes", history=[v.to_dict() for v in rows])

    async def cast_vote(self, proposal_id: Any, direction: str) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
            result = await scheduler.cast_vote_now(self.governance, pid, direction)
        except ValueError as exc:
            return _error(str(exc))
        return {
            "status": "success" if result.success else "error",
            "message": result.message,
            "outcome": result.outcome,
            "neuron_id": result.to_dict()["neuron_id"],
        }

    # =========================================================================
    # Analysis
    # =========================================================================

    async def trigger_analysis(self, proposal_id: Any) -> dict[str, Any]:
        """Reset prior results and analyze in the background. Returns immediately."""
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        if self.pipeline.busy:
            return {"status": "busy", "message": "Analysis already in progress"}

        await scheduler.ensure_proposal_exists(pid)
        found = await self.get_proposal(pid)
        if found["status"] != "success":
            return found

        deleted = await analysis.reset_analysis(pid)
        if deleted is None:
            return _error(f"Failed to reset analysis for proposal {pid}")

        task = asyncio.create_task(
            self.pipeline.process_proposal(found["proposal"]), name=f"analysis:{pid}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return _ok(f"Analysis started for proposal {pid}", reset=deleted)

    async def reset_analysis(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        deleted = await analysis.reset_analysis(pid)
        if deleted is None:
            return _error(f"Failed to reset analysis for proposal {pid}")
        return _ok(f"Reset analysis for proposal {pid}", deleted=deleted)

    async def wait_for_analysis(
        self, proposal_id: Any, *, attempts: int | None = None, interval: float | None = None
    ) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        vote = await analysis.wait_for_agent_vote(pid, attempts, interval)
        if vote is None:
            return _error(f"No agent vote for proposal {pid}", agent_vote=None)
        return _ok(agent_vote=vote.to_dict())

    async def list_agent_votes(self, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
        if page < 1 or limit < 1:
            return _error("page and limit must be positive")
        try:
            async with db.get_session() as session:
                votes = await db.list_agent_votes(session, limit=limit, offset=(page - 1) * limit)
        except Exception as exc:
            logger.exception("Error listing agent votes")
            return _error(f"Error listing agent votes: {exc}")
        return _ok(agent_votes=[v.to_dict() for v in votes], page=page, limit=limit)

    async def get_agent_vote(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
            vote = await analysis.get_agent_vote(pid)
        except ValueError as exc:
            return _error(str(exc))
        except Exception as exc:
            logger.exception("Error retrieving agent vote")
            return _error(f"Error retrieving agent vote: {exc}")
        return _ok(agent_vote=vote.to_dict() if vote else None)

    async def get_agent_logs(self, proposal_id: Any) -> dict[str, Any]:
        try:
            pid = parse_proposal_id(proposal_id)
        except ValueError as exc:
            return _error(str(exc))
        try:
            async with db.get_session() as session:
                logs = await db.get_agent_logs(session, pid)
        except Exception as exc:
            logger.exception("Error retrieving agent logs")
            return _error(f"Error retrieving agent logs: {exc}")
        return _ok(logs=[log.to_dict() for log in logs])

    # =========================================================================
    # Config
    # =========================================================================

    async def get_config(self, key: str) -> dict[str, Any]:
        try:
            value = await config_store.get_config_value(key)
        except Exception as exc:
            logger.exception("Error reading config %s", key)
            return _error(f"Error reading config: {exc}")
        return _ok(key=key, value=value)

    async def set_config(self, key: str, value: str) -> dict[str, Any]:
        if key == config_store.VOTE_SCHEDULE_DELAY:
            try:
                if int(value) < 0:
                    raise ValueError
            except ValueError:
                return _error(f"{key} must be a non-negative integer number of seconds")
        elif key == config_store.USER_NEURON_ID:
            value = str(value).strip()
            if not value.isdigit():
                return _error(f"Invalid neuron id: {value!r}")
        elif key == config_store.MINIMUM_PROPOSAL_ID:
            return await self._lower_cutoff(value)
        try:
            await config_store.set_config_value(key, value)
        except Exception as exc:
            logger.exception("Error writing config %s", key)
            return _error(f"Error writing config: {exc}")
        return _ok(f"Updated {key}", key=key)

    async def _lower_cutoff(self, value: str) -> dict[str, Any]:
        key = config_store.MINIMUM_PROPOSAL_ID
        try:
            cutoff = parse_proposal_id(value)
        except ValueError as exc:
            return _error(str(exc))
        try:
            lowered = await config_store.update_minimum_proposal_id(cutoff)
        except Exception as exc:
            logger.exception("Error writing config %s", key)
            return _error(f"Error writing config: {exc}")
        if not lowered:
            current = await config_store.get_minimum_proposal_id()
            return _error(f"{key} can only be lowered (currently {current})")
        return _ok(f"Updated {key}", key=key)

    async def get_user_neuron(self) -> dict[str, Any]:
        result = await self.get_config(config_store.USER_NEURON_ID)
        if result["status"] != "success":
            return result
        return _ok(neuron_id=result["value"])

    async def set_user_neuron(self, neuron_id: Any) -> dict[str, Any]:
        text = str(neuron_id).strip()
        if not text.isdigit():
            return _error(f"Invalid neuron id: {neuron_id!r}")
        result = await self.set_config(config_store.USER_NEURON_ID, text)
        if result["status"] != "success":
            return result
        return _ok(f"Using neuron {text}", neuron_id=text)
