"""Async database connection and operations for the voting agent."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .ballots import placeholder_payload
from .config import settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .models import AgentLog, AgentVote, Base, ConfigEntry, Proposal, ScheduledVote

# Create async engine and session factory
engine: AsyncEngine = create_async_engine(
    settings.database_url, echo=settings.database_echo, pool_pre_ping=True
)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def configure_database(url: str, **engine_kwargs: Any) -> AsyncEngine:
    """Rebind the module engine and session factory to another database URL."""
    global engine, async_session_factory

    engine = create_async_engine(url, **engine_kwargs)
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose() -> None:
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(
                    schema_not_initialized_message(exc)
                ) from exc
            raise


def _now() -> int:
    return int(time.time())


# =============================================================================
# Config Operations
# =============================================================================


async def get_config_entry(session: AsyncSession, key: str) -> str | None:
    """Get a raw config value, or None when the key was never set."""
    entry = await session.get(ConfigEntry, key)
    return entry.value if entry else None


async def upsert_config_entry(session: AsyncSession, key: str, value: str) -> None:
    entry = await session.get(ConfigEntry, key)
    if entry is None:
        session.add(ConfigEntry(key=key, value=value))
    else:
        entry.value = value
    await session.flush()


async def insert_config_default(session: AsyncSession, key: str, value: str) -> bool:
    """Insert a config value only if the key is missing. Returns True if inserted."""
    if await session.get(ConfigEntry, key) is not None:
        return False
    session.add(ConfigEntry(key=key, value=value))
    await session.flush()
    return True


# =============================================================================
# Proposal Operations
# =============================================================================


async def get_proposal(session: AsyncSession, proposal_id: int) -> Proposal | None:
    """Get a proposal by its ID."""
    return await session.get(Proposal, proposal_id)


async def proposal_exists(session: AsyncSession, proposal_id: int) -> bool:
    result = await session.execute(select(Proposal.id).where(Proposal.id == proposal_id))
    return result.scalar_one_or_none() is not None


async def upsert_proposal(
    session: AsyncSession, proposal_id: int, payload: dict[str, Any]
) -> tuple[Proposal, bool]:
    """Insert or replace a proposal payload. Returns (proposal, created).

    The processed flag is left untouched on update.
    """
    proposal = await session.get(Proposal, proposal_id)
    created = proposal is None
    if proposal is None:
        proposal = Proposal(id=proposal_id, payload=payload, processed=False, placeholder=False)
        session.add(proposal)
    else:
        proposal.payload = payload
        proposal.placeholder = False
    await session.flush()
    return proposal, created


async def ensure_proposal_exists(
    session: AsyncSession, proposal_id: int, *, now: int | None = None
) -> bool:
    """Insert a placeholder row if the proposal is unknown. Returns True if one was created."""
    if await proposal_exists(session, proposal_id):
        return False
    session.add(
        Proposal(
            id=proposal_id,
            payload=placeholder_payload(proposal_id, now),
            processed=False,
            placeholder=True,
        )
    )
    await session.flush()
    return True


def _processed_filter(query: Any, processed: bool | None) -> Any:
    if processed is None:
        return query
    return query.where(Proposal.processed.is_(processed))


async def list_proposals(
    session: AsyncSession,
    *,
    limit: int = 20,
    offset: int = 0,
    processed: bool | None = None,
) -> list[Proposal]:
    """List proposals newest first, optionally filtered by processed state."""
    query = _processed_filter(select(Proposal), processed)
    query = query.order_by(Proposal.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_proposals(session: AsyncSession, *, processed: bool | None = None) -> int:
    query = _processed_filter(select(func.count(Proposal.id)), processed)
    result = await session.execute(query)
    return int(result.scalar_one())


async def mark_proposal_processed(session: AsyncSession, proposal_id: int) -> bool:
    result = await session.execute(
        update(Proposal).where(Proposal.id == proposal_id).values(processed=True)
    )
    return (result.rowcount or 0) > 0


async def get_unanalyzed_proposals(session: AsyncSession, limit: int) -> list[Proposal]:
    """Unprocessed, non-placeholder proposals with no agent vote, newest first."""
    result = await session.execute(
        select(Proposal)
        .outerjoin(AgentVote, AgentVote.proposal_id == Proposal.id)
        .where(
            AgentVote.id.is_(None),
            Proposal.processed.is_(False),
            Proposal.placeholder.is_(False),
        )
        .order_by(Proposal.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# =============================================================================
# Scheduled Vote Operations
# =============================================================================


async def delete_active_scheduled_vote(session: AsyncSession, proposal_id: int) -> int:
    """Hard-delete the unexecuted scheduled vote for a proposal. Returns rows deleted."""
    result = await session.execute(
        delete(ScheduledVote).where(
            ScheduledVote.proposal_id == proposal_id,
            ScheduledVote.executed.is_(False),
        )
    )
    return result.rowcount or 0


async def create_scheduled_vote(
    session: AsyncSession,
    proposal_id: int,
    direction: str,
    scheduled_time: int,
) -> ScheduledVote:
    """Replace any active scheduled vote for the proposal with a new one."""
    await delete_active_scheduled_vote(session, proposal_id)
    vote = ScheduledVote(
        proposal_id=proposal_id,
        direction=direction,
        scheduled_time=scheduled_time,
        executed=False,
        executed_time=None,
        error_message=None,
        error_detail=None,
    )
    session.add(vote)
    await session.flush()
    return vote


async def get_active_scheduled_vote(
    session: AsyncSession, proposal_id: int
) -> ScheduledVote | None:
    result = await session.execute(
        select(ScheduledVote).where(
            ScheduledVote.proposal_id == proposal_id,
            ScheduledVote.executed.is_(False),
        )
    )
    return result.scalar_one_or_none()


async def get_scheduled_vote(session: AsyncSession, vote_id: int) -> ScheduledVote | None:
    return await session.get(ScheduledVote, vote_id)


async def get_due_scheduled_votes(session: AsyncSession, now: int) -> list[ScheduledVote]:
    """Unexecuted votes whose scheduled time has passed, oldest first."""
    result = await session.execute(
        select(ScheduledVote)
        .where(ScheduledVote.scheduled_time <= now, ScheduledVote.executed.is_(False))
        .order_by(ScheduledVote.scheduled_time, ScheduledVote.id)
    )
    return list(result.scalars().all())


async def mark_scheduled_vote_executed(
    session: AsyncSession,
    vote_id: int,
    *,
    executed_time: int | None = None,
    error_message: str | None = None,
    error_detail: str | None = None,
) -> bool:
    """Terminalize a scheduled vote. Only unexecuted rows transition; returns True if one did."""
    result = await session.execute(
        update(ScheduledVote)
        .where(ScheduledVote.id == vote_id, ScheduledVote.executed.is_(False))
        .values(
            executed=True,
            executed_time=executed_time if executed_time is not None else _now(),
            error_message=error_message,
            error_detail=error_detail,
        )
    )
    return (result.rowcount or 0) > 0


async def get_scheduled_vote_history(
    session: AsyncSession, proposal_id: int
) -> list[ScheduledVote]:
    result = await session.execute(
        select(ScheduledVote)
        .where(ScheduledVote.proposal_id == proposal_id)
        .order_by(ScheduledVote.scheduled_time.desc(), ScheduledVote.id.desc())
    )
    return list(result.scalars().all())


# =============================================================================
# Agent Vote Operations
# =============================================================================


async def replace_agent_vote(
    session: AsyncSession,
    proposal_id: int,
    direction: str,
    reasoning: str,
    *,
    created_at: int | None = None,
) -> AgentVote:
    """Store the agent's recommendation, replacing any previous one."""
    await session.execute(delete(AgentVote).where(AgentVote.proposal_id == proposal_id))
    vote = AgentVote(
        proposal_id=proposal_id,
        direction=direction,
        reasoning=reasoning,
        created_at=created_at if created_at is not None else _now(),
        scheduled=False,
    )
    session.add(vote)
    await session.flush()
    return vote


async def get_agent_vote(session: AsyncSession, proposal_id: int) -> AgentVote | None:
    result = await session.execute(select(AgentVote).where(AgentVote.proposal_id == proposal_id))
    return result.scalar_one_or_none()


async def list_agent_votes(
    session: AsyncSession, *, limit: int = 100, offset: int = 0
) -> list[AgentVote]:
    result = await session.execute(
        select(AgentVote)
        .order_by(AgentVote.created_at.desc(), AgentVote.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def mark_agent_vote_scheduled(session: AsyncSession, proposal_id: int) -> bool:
    result = await session.execute(
        update(AgentVote).where(AgentVote.proposal_id == proposal_id).values(scheduled=True)
    )
    return (result.rowcount or 0) > 0


# =============================================================================
# Agent Log Operations
# =============================================================================


async def add_agent_log(
    session: AsyncSession,
    proposal_id: int,
    request: str,
    response: str,
    *,
    created_at: int | None = None,
) -> AgentLog:
    """Append a reasoning-service audit entry."""
    log = AgentLog(
        proposal_id=proposal_id,
        request=request,
        response=response,
        created_at=created_at if created_at is not None else _now(),
    )
    session.add(log)
    await session.flush()
    return log


async def get_agent_logs(session: AsyncSession, proposal_id: int) -> list[AgentLog]:
    result = await session.execute(
        select(AgentLog)
        .where(AgentLog.proposal_id == proposal_id)
        .order_by(AgentLog.created_at, AgentLog.id)
    )
    return list(result.scalars().all())


async def delete_agent_data(session: AsyncSession, proposal_id: int) -> dict[str, int]:
    """Delete agent vote, agent logs and the active scheduled vote for a proposal."""
    votes = await session.execute(delete(AgentVote).where(AgentVote.proposal_id == proposal_id))
    logs = await session.execute(delete(AgentLog).where(AgentLog.proposal_id == proposal_id))
    scheduled = await delete_active_scheduled_vote(session, proposal_id)
    return {
        "agent_votes": votes.rowcount or 0,
        "agent_logs": logs.rowcount or 0,
        "scheduled_votes": scheduled,
    }
