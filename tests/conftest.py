"""Shared test fixtures and configuration for pytest."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from neuronvote import db
from tests.fakes import FakeGovernance, FakeReasoning, build_proposal


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None]:
    """Fresh in-memory SQLite schema per test."""
    db.configure_database(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.init_db()
    yield
    await db.dispose()


@pytest.fixture
def make_proposal() -> Callable[..., dict[str, Any]]:
    return build_proposal


@pytest.fixture
def governance() -> FakeGovernance:
    return FakeGovernance()


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()
