import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

import pytest
import psycopg2
from sqlalchemy import create_engine


# Ensure repo root is importable so `api.*`, `common.*` and `services.*` work
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from api.db.job_store import JobStore  # noqa: E402
from api.db.models import Post  # noqa: E402
from api.db.session import Base, make_session_factory  # noqa: E402
from common.clock import ManualClock  # noqa: E402


class RecordingNotifier:
    def __init__(self):
        self.announced = []
        self.waits = []

    def announce(self, job_id):
        self.announced.append(job_id)

    def wait(self, timeout):
        self.waits.append(timeout)
        return False


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL is not set; export DATABASE_URL to run DB-backed tests.")

    # If DB isn't reachable, skip instead of failing the whole suite.
    try:
        conn = psycopg2.connect(url)
        conn.close()
    except Exception as e:
        pytest.skip(f"Postgres not reachable at DATABASE_URL: {e}")

    return url


@pytest.fixture
def engine(tmp_path):
    # File-backed so that several threads get their own connections.
    eng = create_engine(
        f"sqlite:///{tmp_path / 'queue.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 1, 1, 12, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_store(session_factory, clock, notifier):
    def _make(**kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("max_attempts", 5)
        kwargs.setdefault("base_delay_seconds", 60)
        kwargs.setdefault("delay_cap_seconds", 3600)
        kwargs.setdefault("lease_seconds", 900)
        return JobStore(session_factory=session_factory, **kwargs)
    return _make


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def make_post(session_factory, clock):
    def _make(url=None, user_id=None):
        url = url or f"https://example.com/{uuid.uuid4().hex}"
        post = Post(
            id=uuid.uuid4(),
            user_id=user_id or uuid.uuid4(),
            original_url=url,
            canonical_url=url,
            payload={},
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        with session_factory() as session, session.begin():
            session.add(post)
        return post.id
    return _make
