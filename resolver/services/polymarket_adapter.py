"""
Polymarket listing adapter.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from resolver.config import settings
from resolver.models.base import utcnow


class PolymarketAdapter:
    """Fetches active Polymarket markets from the Gamma API and normalizes them."""

    marketplace = "polymarket"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 min_liquidity: float = 100):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.base_url = (base_url or settings.gamma_api_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.http_timeout)
        self.min_liquidity = min_liquidity

    async def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        headers = {"Accept": "application/json"}

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, headers=headers, params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise Exception(f"Gamma API error: {response.status} - {error_text}")
                return await response.json()

    @staticmethod
    def _first_price(raw: Any) -> float:
        # Gamma sends outcomePrices as a JSON encoded list of strings
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return 0.5
        if isinstance(raw, list) and raw:
            try:
                return float(raw[0])
            except (TypeError, ValueError):
                return 0.5
        return 0.5

    @staticmethod
    def _parse_date(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def normalize(self, market: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Common listing shape; price in basis points 0-10000."""
        now = now or utcnow()
        price = self._first_price(market.get("outcomePrices"))
        try:
            liquidity = float(market.get("liquidity") or 0)
        except (TypeError, ValueError):
            liquidity = 0.0

        return {
            "marketplace": self.marketplace,
            "external_id": str(market.get("id")),
            "question": str(market.get("question") or ""),
            "category": str(market.get("category") or "general"),
            "price": max(0, min(10000, int(round(price * 10000)))),
            "liquidity": liquidity,
            "resolution_time": self._parse_date(market.get("endDate")) or now + timedelta(hours=24),
            "last_update": now
        }

    async def fetch_markets(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Active markets above the liquidity floor; empty on any API error."""
        try:
            response = await self._make_request("/markets", params={
                "closed": "false",
                "liquidity_num_min": self.min_liquidity,
                "limit": limit
            })
        except Exception as e:
            self.logger.error(f"Error fetching markets: {e}")
            return []

        markets = [self.normalize(m) for m in response or [] if m.get("id") is not None]
        self.logger.info(f"Fetched {len(markets)} markets from Polymarket")
        return markets

    async def fetch_market(self, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self._make_request(f"/markets/{external_id}")
        except Exception as e:
            self.logger.error(f"Error fetching market {external_id}: {e}")
            return None
        if not response or response.get("id") is None:
            return None
        return self.normalize(response)
