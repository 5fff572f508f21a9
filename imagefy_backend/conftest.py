# imagefy_backend/conftest.py
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from imagefy_backend.core.config import load_settings
from imagefy_backend.core.database import create_all_tables, init_engine
from imagefy_backend.features.entitlements.store import EntitlementStore
from imagefy_backend.main import create_app
from imagefy_backend.tests.mocks import VALID_SIGNATURE, FakeProvider


@pytest.fixture
def settings():
    """Settings isolated from the process environment and any .env file."""
    return load_settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_test_123",
        REDEMPTION_CODES="IMAGEFY2025PRO",
        IMAGE_SEARCH_API_KEY="img-key-123",
        IMAGE_SEARCH_URL="https://images.test/v1/search",
        PORTAL_RETURN_URL="https://imagefy.test",
    )


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = init_engine("sqlite://")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return EntitlementStore(engine)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def image_requests():
    """Requests seen by the fake image search upstream."""
    return []


@pytest.fixture
def image_transport(image_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        image_requests.append(request)
        return httpx.Response(200, json={"page": 1, "photos": [{"id": 1}]})

    return httpx.MockTransport(handler)


@pytest.fixture
def app(settings, engine, provider, image_transport):
    return create_app(
        settings,
        engine=engine,
        provider_factory=lambda cfg: provider,
        image_transport=image_transport,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def post_webhook(client):
    """POST a Stripe event to /webhook with a signature the fake provider accepts."""
    def _post(event, signature=VALID_SIGNATURE):
        return client.post(
            "/webhook",
            content=json.dumps(event),
            headers={"stripe-signature": signature, "content-type": "application/json"},
        )

    return _post
