"""
Test configuration for site_analytics.

src/ is put on sys.path so the tests run from a plain checkout as well as
from an installed package.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import simpy
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

_src_dir = Path(__file__).resolve().parents[1] / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from site_analytics import db_utils  # noqa: E402
from site_analytics.consent import ConsentGate  # noqa: E402
from site_analytics.context import TrackingContext  # noqa: E402
from site_analytics.sink import MemorySink  # noqa: E402
from site_analytics.storage import MemoryStorage  # noqa: E402

START = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
SESSION_ID = "1760875200000-k3j9x0a1b"
FINGERPRINT = "9f3c2a71"


@pytest.fixture
def env():
    return simpy.Environment()


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def local_storage():
    return MemoryStorage()


@pytest.fixture
def make_ctx(env, sink, local_storage):
    def _make(*, consent: bool = True, path: str = "/", width: int = 1280, referrer=None):
        gate = ConsentGate(local_storage, now=lambda: START)
        if consent:
            gate.accept_all()
        return TrackingContext(
            env=env,
            sink=sink,
            consent=gate,
            session_id=SESSION_ID,
            fingerprint=FINGERPRINT,
            start_dt=START,
            page_path=path,
            referrer=referrer,
            viewport_width=width,
        )
    return _make


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        future=True,
    )
    db_utils.ensure_schema_and_tables(engine=eng)
    yield eng
    eng.dispose()
