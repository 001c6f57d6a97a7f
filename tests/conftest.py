import os
import sys

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep the suite off the network and off disk
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GEO_LOOKUP_ENABLED", "false")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from secmon.utils.data_manager import DataManager
from secmon.schemas import LogRecord


def _make_test_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def test_session():
    """Fresh in-memory SQLite shared by every thread of the test."""
    return _make_test_session()


@pytest.fixture
def store(test_session):
    engine, TestingSessionLocal = test_session
    return DataManager(session_factory=TestingSessionLocal, engine=engine)


@pytest.fixture
def make_log(store):
    def _make(level="info", message="", keywords=None):
        return store.create_log(LogRecord(level=level, message=message, keywords=keywords or []))
    return _make
