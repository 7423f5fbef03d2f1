import os
import tempfile
from types import SimpleNamespace

# Settings are read once and cached, so the test environment must be in place before
# anything from vetchat is imported.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("REPORT_UPLOAD_DIR", tempfile.mkdtemp(prefix="vetchat-reports-"))

import pytest
from fastapi.testclient import TestClient

from vetchat.auth import create_access_token
from vetchat.database import Base, SessionLocal, engine, init_db
from vetchat.main import app
from vetchat.services import ai_service, analysis_gate

init_db()

ALICE = "user_alice"
BOB = "user_bob"


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture(autouse=True)
def clean_state():
    yield
    app.dependency_overrides.clear()
    analysis_gate._gate = None
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def alice_headers():
    return auth_headers(ALICE)


@pytest.fixture
def bob_headers():
    return auth_headers(BOB)


@pytest.fixture
def fake_chat_stream(monkeypatch):
    """Replace the Gemini chat stream; records the history each call would send upstream."""
    state = SimpleNamespace(calls=[], fragments=["Hel", "lo, ", "world"])

    def fake(messages, stop_event=None):
        state.calls.append(ai_service.with_system_prompt(messages))
        for fragment in state.fragments:
            yield fragment

    monkeypatch.setattr(ai_service, "generate_chat_stream", fake)
    return state


@pytest.fixture
def fake_analysis_stream(monkeypatch):
    state = SimpleNamespace(calls=[], fragments=["## Summary\n", "All values are within range."])

    def fake(file_bytes, mime_type="application/pdf", stop_event=None):
        state.calls.append((len(file_bytes), mime_type))
        for fragment in state.fragments:
            yield fragment

    monkeypatch.setattr(ai_service, "generate_report_analysis_stream", fake)
    return state
