"""Shared fixtures."""

import pytest

from primepulse.db.session import (
    build_engine,
    build_session_factory,
    create_analytics_schema,
    create_relational_schema,
)


@pytest.fixture
async def relational_db(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'relational.db'}")
    await create_relational_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def analytics_db(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    await create_analytics_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()
