"""Shared fixtures for API endpoint tests."""

import os

import pytest
from fastapi.testclient import TestClient

# Keep the app offline before any app imports
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["VAPI_API_KEY"] = ""
os.environ["DATABASE_URL"] = ""
os.environ["AUTOSTART_INGESTION"] = "false"

from src.app.dependencies import set_pipeline  # noqa: E402
from src.app.main import create_app  # noqa: E402
from src.outreach.config import OutreachConfig  # noqa: E402
from src.outreach.errors import CollaboratorUnavailable  # noqa: E402
from src.outreach.pipeline import build_pipeline  # noqa: E402
from src.outreach.telephony import TelephonyResponse  # noqa: E402


class FakeTelephony:
    """Succeeds for everyone except user ids listed in ``failing``."""

    def __init__(self):
        self.failing: set[str] = set()
        self.requests = []
        self.placed: set[str] = set()

    def place_call(self, request):
        self.requests.append(request)
        if request.metadata.get("user_id") in self.failing:
            return TelephonyResponse(success=False, error="HTTP 503")
        dispatch_id = f"call_{len(self.requests)}"
        self.placed.add(dispatch_id)
        return TelephonyResponse(success=True, dispatch_id=dispatch_id)

    def get_call(self, call_id):
        if call_id not in self.placed:
            raise CollaboratorUnavailable("telephony", "HTTP 404")
        return {"id": call_id, "status": "ended"}


@pytest.fixture(scope="session")
def telephony() -> FakeTelephony:
    return FakeTelephony()


@pytest.fixture(scope="session")
def app(telephony):
    """Create the app around an offline pipeline with fake telephony."""
    config = OutreachConfig(default_call_number="+15550000000", pipeline_workers=2)
    set_pipeline(build_pipeline(config, telephony=telephony))
    return create_app()


@pytest.fixture(scope="session")
def client(app):
    """Provide a TestClient; the lifespan picks up the prepared pipeline."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def removal_sequence(base_time):
    """Payloads shrinking a cart one item per minute: the fourth forces a call."""
    def _make(user_id: str, start: int = 4):
        return [
            {
                "userId": user_id,
                "timestamp": base_time.replace(minute=i).isoformat(),
                "cartItems": start - i,
                "cartValue": 10.0 * (start - i),
                "userName": "Ana",
            }
            for i in range(start)
        ]
    return _make
