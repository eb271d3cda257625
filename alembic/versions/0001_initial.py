"""Initial voting agent schema.

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "config",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )

    op.create_table(
        "proposals",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("placeholder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "scheduled_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("proposal_id", sa.BigInteger(), sa.ForeignKey("proposals.id"), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("scheduled_time", sa.BigInteger(), nullable=False),
        sa.Column("executed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("executed_time", sa.BigInteger(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
    )
    op.create_index("ix_scheduled_votes_proposal_id", "scheduled_votes", ["proposal_id"])
    op.create_index(
        "uq_scheduled_votes_active_proposal",
        "scheduled_votes",
        ["proposal_id"],
        unique=True,
        sqlite_where=sa.text("executed = 0"),
        postgresql_where=sa.text("executed = false"),
    )

    op.create_table(
        "agent_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("proposal_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("scheduled", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "agent_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("proposal_id", sa.BigInteger(), nullable=False),
        sa.Column("request", sa.Text(), nullable=False),
        sa.Column("response", sa.Text(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_agent_logs_proposal_id", "agent_logs", ["proposal_id"])


def downgrade() -> None:
    op.drop_index("ix_agent_logs_proposal_id", table_name="agent_logs")
    op.drop_table("agent_logs")
    op.drop_table("agent_votes")
    op.drop_index("uq_scheduled_votes_active_proposal", table_name="scheduled_votes")
    op.drop_index("ix_scheduled_votes_proposal_id", table_name="scheduled_votes")
    op.drop_table("scheduled_votes")
    op.drop_table("proposals")
    op.drop_table("config")
