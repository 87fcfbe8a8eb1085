from __future__ import annotations

import logging
from typing import Dict

from ..errors import DataUnavailable
from .http import JsonHttpClient

log = logging.getLogger("context")

LIQ_FIELDS = ("long1h", "short1h", "long4h", "short4h", "long24h", "short24h")


class ContextProvider:
    """Off-exchange context: liquidation aggregates, global market cap, fear & greed."""

    def __init__(
        self,
        http: JsonHttpClient,
        *,
        liquidations_url: str = "",
        global_url: str = "https://api.coingecko.com/api/v3/global",
        fear_greed_url: str = "https://api.alternative.me/fng/?limit=1",
    ):
        self.http = http
        self.liquidations_url = liquidations_url
        self.global_url = global_url
        self.fear_greed_url = fear_greed_url

    async def fetch_liquidations(self, asset: str) -> Dict[str, float]:
        """USD liquidations per window for `asset` from an aggregate JSON feed.

        The feed is `{"data": [{"symbol": "ETH", "long1h": ..., ...}, ...]}`.
        An asset missing from the feed reads as all zeros.
        """
        if not self.liquidations_url:
            raise DataUnavailable("no liquidations_url configured")
        raw = await self.http.get_json(self.liquidations_url)
        rows = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(rows, list):
            raise DataUnavailable("liquidations payload has no data list")
        row = next((r for r in rows if isinstance(r, dict) and r.get("symbol") == asset.upper()), {})
        return {k: float(row.get(k) or 0.0) for k in LIQ_FIELDS}

    async def fetch_global(self) -> Dict[str, float]:
        raw = await self.http.get_json(self.global_url)
        d = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(d, dict):
            raise DataUnavailable("global payload has no data")
        try:
            total = (d.get("total_market_cap") or {}).get("usd") or 0.0
            pct = d.get("market_cap_percentage") or {}
            return {
                "total_mcap_t": round(float(total) / 1e12, 2),
                "mcap_24h_pct": round(float(d.get("market_cap_change_percentage_24h_usd") or 0.0), 2),
                "btc_dominance": round(float(pct.get("btc") or 0.0), 2),
                "eth_dominance": round(float(pct.get("eth") or 0.0), 2),
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise DataUnavailable(f"bad global payload: {e}") from e

    async def fetch_fear_greed(self) -> str:
        raw = await self.http.get_json(self.fear_greed_url)
        rows = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            raise DataUnavailable("fear & greed missing")
        row = rows[0]
        return f"{row.get('value')} · {row.get('value_classification')}"
