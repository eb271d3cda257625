"""SQLAlchemy models for the voting agent database."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Vote(StrEnum):
    """Binary vote direction."""

    YES = "yes"
    NO = "no"

    @property
    def code(self) -> int:
        """Governance network ballot code (1 = adopt, 2 = reject)."""
        return 1 if self is Vote.YES else 2

    @classmethod
    def parse(cls, value: object) -> "Vote | None":
        """Case-insensitive match against the two permitted values; None otherwise."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSON().with_variant(JSONB(), "postgresql"),
    }


class ConfigEntry(Base):
    """Durable key/value settings (prompt, delay, credentials, cursors)."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class Proposal(Base):
    """Mirrored governance proposal. Rows are never deleted."""

    __tablename__ = "proposals"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    placeholder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.payload,
            "id": str(self.id),
            "processed": self.processed,
            "placeholder": self.placeholder,
        }


class ScheduledVote(Base):
    """Delayed vote action, executed (successfully or not) exactly once."""

    __tablename__ = "scheduled_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("proposals.id"), nullable=False, index=True
    )
    direction: Mapped[str] = mapped_column(String, nullable=False)  # 'yes', 'no'
    scheduled_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    executed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    executed_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    # One active (unexecuted) row per proposal; executed rows are history.
    __table_args__ = (
        Index(
            "uq_scheduled_votes_active_proposal",
            "proposal_id",
            unique=True,
            sqlite_where=text("executed = 0"),
            postgresql_where=text("executed = false"),
        ),
    )

    @property
    def failed(self) -> bool:
        return self.executed and self.error_message is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": str(self.proposal_id),
            "direction": self.direction,
            "scheduled_time": self.scheduled_time,
            "executed": self.executed,
            "executed_time": self.executed_time,
            "error_message": self.error_message,
            "error_detail": self.error_detail,
        }


class AgentVote(Base):
    """Vote recommended by the reasoning service, one per proposal."""

    __tablename__ = "agent_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": str(self.proposal_id),
            "direction": self.direction,
            "reasoning": self.reasoning,
            "created_at": self.created_at,
            "scheduled": self.scheduled,
        }


class AgentLog(Base):
    """Append-only audit trail of reasoning-service traffic."""

    __tablename__ = "agent_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    request: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": str(self.proposal_id),
            "request": self.request,
            "response": self.response,
            "created_at": self.created_at,
        }
