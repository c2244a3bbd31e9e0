"""Shared pytest fixtures for Reqport tests."""

import os
import tempfile

# Keep the app's default SQLite file out of the working tree
os.environ.setdefault("REQPORT_DATA_DIR", tempfile.mkdtemp(prefix="reqport-test-"))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import reqport.models  # noqa: E402,F401
from reqport.api.deps import get_session_registry  # noqa: E402
from reqport.database import Base, get_db  # noqa: E402
from reqport.main import app  # noqa: E402
from reqport.services.session import ImportSessionRegistry  # noqa: E402
from reqport.services.store import MemoryStore, SqlStore  # noqa: E402


@pytest.fixture
def memory_store():
    """Store that records every call."""
    return MemoryStore()


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def sql_store(db_session):
    return SqlStore(db_session)


@pytest.fixture
def session_registry():
    return ImportSessionRegistry(ttl_seconds=3600)


@pytest.fixture
async def client(db_session, session_registry):
    """Async test client with the in-memory DB and a fresh session registry wired in."""

    def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_registry] = lambda: session_registry
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
