import os

# Override DATABASE_URL before any signal_store imports so tests run on in-memory SQLite
os.environ["DATABASE_URL"] = "sqlite://"

import pytest  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from signal_store.db import Base, engine, get_db  # noqa: E402
from signal_store.api import app  # noqa: E402
from signal_store.models import RecordingSession  # noqa: E402
from signal_store.schemas import UploadBatch  # noqa: E402

# Reuse the same engine that signal_store.db created (now SQLite via env override)
TestSession = sessionmaker(bind=engine)

SESSION_ID = "session_1700000000000_user1"
USER_ID = "user-1"
HEADERS = {"X-User-Id": USER_ID}


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def _override():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def recording(db):
    """An active sEMG session owned by USER_ID"""
    session = RecordingSession(
        session_id=SESSION_ID,
        user_id=USER_ID,
        device_id="dev-1",
        device_name="Armband",
        device_type="sEMG",
        sample_rate=1000,
        start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    db.add(session)
    db.commit()
    return session


def make_batch(timestamps, session_id=SESSION_ID, width=10, value=None) -> UploadBatch:
    """Build an upload batch; channel c of sample t carries t + c / 10 unless ``value`` is set."""
    timestamps = list(timestamps)
    samples = [
        {
            "timestamp": ts,
            "values": [value if value is not None else ts + c / 10 for c in range(width)],
            "sessionId": session_id,
        }
        for ts in timestamps
    ]
    return UploadBatch.model_validate(
        {
            "sessionId": session_id,
            "samples": samples,
            "deviceInfo": {"name": "Armband", "address": "AA:BB:CC:DD:EE:FF"},
            "batchInfo": {"size": len(samples), "startTime": timestamps[0], "endTime": timestamps[-1]},
        }
    )
