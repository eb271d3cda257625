"""
Standardized event system for the voting agent.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from redis.asyncio import Redis

from .config import settings

logger = logging.getLogger(__name__)

_redis: Redis | None = None


def get_redis_client() -> Redis:
    """Get the shared async Redis client, created on first use."""
    global _redis
    if _redis is None:
        _redis = Redis.from_url(settings.redis_url, max_connections=10, decode_responses=True)
    return _redis


class EventType(str, Enum):
    SYNC_COMPLETED = "sync.completed"

    ANALYSIS_STARTED = "analysis.started"
    ANALYSIS_COMPLETED = "analysis.completed"
    ANALYSIS_FAILED = "analysis.failed"
    ANALYSIS_RESET = "analysis.reset"

    VOTE_SCHEDULED = "vote.scheduled"
    VOTE_CANCELED = "vote.canceled"
    VOTE_EXECUTED = "vote.executed"
    VOTE_FAILED = "vote.failed"


@dataclass
class GovernanceEvent:
    """Standardized event for the voting agent."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.SYNC_COMPLETED
    proposal_id: Optional[int] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "proposal_id": str(self.proposal_id) if self.proposal_id is not None else None,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }


EventHandler = Callable[[GovernanceEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: GovernanceEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler error for %s", event.type.value)


event_bus = EventEmitter()


async def emit(
    event_type: EventType,
    *,
    proposal_id: int | None = None,
    message: str = "",
    data: dict[str, Any] | None = None,
    duration_ms: int | None = None,
) -> GovernanceEvent:
    event = GovernanceEvent(
        type=event_type,
        proposal_id=proposal_id,
        message=message,
        data=data or {},
        duration_ms=duration_ms,
    )
    await event_bus.emit(event)
    return event


def log_event_handler(event: GovernanceEvent) -> None:
    """Handler that writes every event to the application log."""
    level = logging.WARNING if event.type in (EventType.ANALYSIS_FAILED, EventType.VOTE_FAILED) else logging.INFO
    logger.log(level, "%s: %s", event.type.value, event.message)


event_bus.on_event(log_event_handler)


async def publish_event_handler(event: GovernanceEvent) -> None:
    """Handler that publishes proposal events to Redis Pub/Sub."""
    if not settings.redis_events_enabled or event.proposal_id is None:
        return

    try:
        redis = get_redis_client()
        channel = f"channel:proposal:{event.proposal_id}"
        await redis.publish(channel, json.dumps(event.to_dict()))
    except Exception as exc:
        logger.warning("Redis publish failed: %s", exc)


event_bus.on_event(publish_event_handler)
