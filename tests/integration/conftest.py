"""Fixtures for exercising the FastAPI app against a per-test database.

The app is driven without its lifespan, so neither the global engine nor
the maintenance sweeper is touched.
"""

import pytest
from fastapi.testclient import TestClient

from qr_payment.api.dependencies import (
    get_confirm_rate_limiter,
    get_db,
    get_order_gateway,
    get_scan_rate_limiter,
)
from qr_payment.api.main import app

SERVICE_HEADERS = {
    "X-Service-Auth": "service:order-service",
    "X-Request-ID": "req-test-0001",
}


@pytest.fixture
def client(session_factory, order_gateway, scan_limiter, confirm_limiter):
    """Create a test client with database, gateway and rate limiter overrides."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_order_gateway] = lambda: order_gateway
    app.dependency_overrides[get_scan_rate_limiter] = lambda: scan_limiter
    app.dependency_overrides[get_confirm_rate_limiter] = lambda: confirm_limiter

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def issue_token(client):
    """Issue a token through the internal endpoint and return its JSON body."""

    def _issue(order_id: int) -> dict:
        response = client.post(f"/internal/v1/orders/{order_id}/token", headers=SERVICE_HEADERS)
        assert response.status_code == 201, response.text
        return response.json()

    return _issue
