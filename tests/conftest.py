"""Test fixtures and configuration."""

import logging
import os
import sys

# Settings are read at import time; point them at SQLite before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import structlog  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from budget_engine import database  # noqa: E402
from budget_engine.logger import get_logger  # noqa: E402
from budget_engine.services import reconciliation  # noqa: E402

logger = get_logger(__name__)


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Tolerance profile cache ---
@pytest.fixture(autouse=True)
def reset_tolerance_profiles(monkeypatch):
    """Drop cached profiles and threshold overrides so each test reads a clean config."""
    monkeypatch.delenv("RECONCILIATION_HIGH_THRESHOLD", raising=False)
    monkeypatch.delenv("RECONCILIATION_MEDIUM_THRESHOLD", raising=False)
    monkeypatch.setattr(reconciliation, "_profiles_cache", None)
    yield
    monkeypatch.setattr(reconciliation, "_profiles_cache", None)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory SQLite database per test.

    StaticPool keeps the single in-memory connection alive across sessions.
    Sessions on this engine must be used one at a time.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    database.enable_sqlite_savepoints(engine)
    await database.init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_database_connection(session_maker):
    """Override global database session maker to use test engine."""
    previous = database.set_test_session_maker(session_maker)
    yield
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker):
    """Session for service-level tests; uncommitted work is rolled back on close."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(session_maker):
    """Async test client; requests run against the per-test database."""
    from budget_engine.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance
