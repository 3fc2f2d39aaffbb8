"""Operational HTTP endpoints."""
import pytest
from fastapi.testclient import TestClient

from resolver import store
from resolver.database import get_db
from resolver.main import app
from resolver.models import DisputeStatus, MarketStatus

from conftest import CHAIN_ID, DISPUTE_ADDRESS


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_status_reports_counts_and_watermarks(client, db, make_market, make_dispute):
    market = make_market(status=MarketStatus.RESOLVED.value)
    make_dispute(market)
    make_dispute(market, dispute_id=3, status=DisputeStatus.RESOLVED.value)
    store.save_checkpoint(db, "dispute_events", CHAIN_ID, DISPUTE_ADDRESS, 1234)

    response = client.get("/api/v1/status")

    assert response.status_code == 200
    body = response.json()
    assert body["disputes"] == {"active": 1, "resolved": 1}
    assert body["pending_submissions"] == 1
    assert body["markets"] == {"resolved": 1}
    assert body["checkpoints"][0]["last_block"] == 1234
    assert body["checkpoints"][0]["contract_address"] == DISPUTE_ADDRESS.lower()
