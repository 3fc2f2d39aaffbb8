"""Polymarket normalization and listing upserts."""
from datetime import datetime

import pytest

from resolver.models import ExternalMarket, Market
from resolver.services.market_syncer import MarketSyncer
from resolver.services.polymarket_adapter import PolymarketAdapter

from conftest import AGGREGATOR_ADDRESS, CHAIN_ID

NOW = datetime(2026, 1, 15, 12, 0, 0)


class StaticAdapter:
    """Serves pre-normalized listings, like PolymarketAdapter.fetch_markets would."""

    def __init__(self, listings):
        self.listings = listings
        self.limits = []

    async def fetch_markets(self, limit=100):
        self.limits.append(limit)
        return list(self.listings)


def _gamma_market(**overrides):
    market = {
        "id": "512345",
        "question": "Will the Fed cut rates in March?",
        "category": "Economics",
        "outcomePrices": "[\"0.655\", \"0.345\"]",
        "liquidity": "15230.5",
        "endDate": "2026-03-20T18:00:00Z",
    }
    market.update(overrides)
    return market


def test_normalize_gamma_market():
    listing = PolymarketAdapter(base_url="http://gamma.test").normalize(_gamma_market(), now=NOW)

    assert listing["marketplace"] == "polymarket"
    assert listing["external_id"] == "512345"
    assert listing["price"] == 6550
    assert listing["liquidity"] == pytest.approx(15230.5)
    assert listing["category"] == "Economics"
    assert listing["resolution_time"] == datetime(2026, 3, 20, 18, 0, 0)
    assert listing["last_update"] == NOW


def test_normalize_fills_defaults():
    adapter = PolymarketAdapter(base_url="http://gamma.test")
    listing = adapter.normalize(
        _gamma_market(outcomePrices=None, category=None, liquidity="n/a", endDate=None), now=NOW
    )

    assert listing["price"] == 5000
    assert listing["category"] == "general"
    assert listing["liquidity"] == 0.0
    assert listing["resolution_time"] == datetime(2026, 1, 16, 12, 0, 0)


def test_normalize_clamps_price():
    adapter = PolymarketAdapter(base_url="http://gamma.test")

    assert adapter.normalize(_gamma_market(outcomePrices=["1.7", "0"]), now=NOW)["price"] == 10000
    assert adapter.normalize(_gamma_market(outcomePrices="[\"-0.2\"]"), now=NOW)["price"] == 0


async def test_fetch_markets_returns_empty_on_api_error(monkeypatch):
    adapter = PolymarketAdapter(base_url="http://gamma.test")

    async def failing_request(endpoint, params=None):
        raise Exception("Gamma API error: 503 - unavailable")

    monkeypatch.setattr(adapter, "_make_request", failing_request)

    assert await adapter.fetch_markets(10) == []


async def test_fetch_markets_skips_rows_without_id(monkeypatch):
    adapter = PolymarketAdapter(base_url="http://gamma.test")
    requests = []

    async def fake_request(endpoint, params=None):
        requests.append((endpoint, params))
        return [_gamma_market(), _gamma_market(id=None)]

    monkeypatch.setattr(adapter, "_make_request", fake_request)

    listings = await adapter.fetch_markets(25)

    assert [listing["external_id"] for listing in listings] == ["512345"]
    assert requests[0][0] == "/markets"
    assert requests[0][1]["limit"] == 25
    assert requests[0][1]["closed"] == "false"


async def test_sync_is_idempotent_per_listing(db, session_factory):
    adapter = PolymarketAdapter(base_url="http://gamma.test")
    first = adapter.normalize(_gamma_market(), now=NOW)
    static = StaticAdapter([first])
    syncer = MarketSyncer(
        adapters={"polymarket": static},
        chain_id=CHAIN_ID,
        aggregator_address=AGGREGATOR_ADDRESS,
        limit=50,
        session_factory=session_factory
    )

    assert await syncer.sync_markets(db) == 1

    static.listings = [adapter.normalize(_gamma_market(outcomePrices="[\"0.7\", \"0.3\"]"), now=NOW)]
    assert await syncer.sync_markets(db) == 1

    rows = db.query(ExternalMarket).all()
    assert len(rows) == 1
    assert rows[0].price == 7000
    assert rows[0].market.market_id == 0
    assert db.query(Market).count() == 1
    assert static.limits == [50, 50]


async def test_bad_listing_does_not_abort_sync(db, session_factory):
    adapter = PolymarketAdapter(base_url="http://gamma.test")
    good = adapter.normalize(_gamma_market(id="1"), now=NOW)
    bad = dict(adapter.normalize(_gamma_market(id="2"), now=NOW))
    del bad["price"]
    syncer = MarketSyncer(
        adapters={"polymarket": StaticAdapter([bad, good])},
        chain_id=CHAIN_ID,
        aggregator_address=AGGREGATOR_ADDRESS,
        session_factory=session_factory
    )

    assert await syncer.sync_markets(db) == 1
    assert [row.external_id for row in db.query(ExternalMarket).all()] == ["1"]


async def test_fetch_single_market(monkeypatch):
    adapter = PolymarketAdapter(base_url="http://gamma.test")
    requested = []

    async def fake_request(endpoint, params=None):
        requested.append(endpoint)
        return _gamma_market(id="777")

    monkeypatch.setattr(adapter, "_make_request", fake_request)

    listing = await adapter.fetch_market("777")

    assert requested == ["/markets/777"]
    assert listing["external_id"] == "777"


async def test_fetch_single_market_missing(monkeypatch):
    adapter = PolymarketAdapter(base_url="http://gamma.test")

    async def not_found(endpoint, params=None):
        raise Exception("Gamma API error: 404 - not found")

    monkeypatch.setattr(adapter, "_make_request", not_found)

    assert await adapter.fetch_market("missing") is None
