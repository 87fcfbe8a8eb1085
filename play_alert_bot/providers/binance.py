from __future__ import annotations

import logging
from typing import Any, List

from ..errors import DataUnavailable
from ..models import Candle
from ..sessions import INTERVAL_MS
from .http import JsonHttpClient

log = logging.getLogger("binance")

PAGE_LIMIT = 1000


def parse_klines(data: Any) -> List[Candle]:
    if not isinstance(data, list):
        raise DataUnavailable(f"unexpected klines payload: {str(data)[:200]}")
    out: List[Candle] = []
    try:
        for row in data:
            # [0]=open time, [6]=close time
            out.append(Candle(
                open_time_ms=int(row[0]),
                close_time_ms=int(row[6]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            ))
    except (IndexError, KeyError, TypeError, ValueError) as e:
        raise DataUnavailable(f"bad kline row: {e!r}") from e
    return out


class BinanceProvider:
    """Spot klines/price and USD-M futures funding and open interest."""

    def __init__(
        self,
        http: JsonHttpClient,
        *,
        spot_base_url: str = "https://api.binance.com",
        futures_base_url: str = "https://fapi.binance.com",
    ):
        self.http = http
        self.spot = spot_base_url.rstrip("/")
        self.futures = futures_base_url.rstrip("/")

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        params = {"symbol": symbol.upper(), "interval": timeframe, "limit": int(limit)}
        return parse_klines(await self.http.get_json(self.spot + "/api/v3/klines", params))

    async def fetch_klines_range(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> List[Candle]:
        """All bars opening in [start_ms, end_ms], paging past the 1000-bar limit."""
        step = INTERVAL_MS.get(timeframe)
        if step is None:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        out: List[Candle] = []
        cursor = int(start_ms)
        while cursor <= end_ms:
            params = {
                "symbol": symbol.upper(),
                "interval": timeframe,
                "startTime": cursor,
                "endTime": int(end_ms),
                "limit": PAGE_LIMIT,
            }
            page = parse_klines(await self.http.get_json(self.spot + "/api/v3/klines", params))
            if not page:
                break
            out.extend(page)
            if len(page) < PAGE_LIMIT:
                break
            cursor = page[-1].open_time_ms + step
        log.debug("klines_range symbol=%s tf=%s bars=%d", symbol, timeframe, len(out))
        return out

    async def fetch_last_price(self, symbol: str) -> float:
        data = await self.http.get_json(self.spot + "/api/v3/ticker/price", {"symbol": symbol.upper()})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"bad ticker payload: {e}") from e

    async def fetch_funding_rates(self, symbol: str, limit: int = 1000) -> List[float]:
        data = await self.http.get_json(
            self.futures + "/fapi/v1/fundingRate", {"symbol": symbol.upper(), "limit": int(limit)}
        )
        try:
            return [float(r["fundingRate"]) for r in data]
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"bad funding payload: {e}") from e

    async def fetch_open_interest(self, symbol: str) -> float:
        data = await self.http.get_json(self.futures + "/fapi/v1/openInterest", {"symbol": symbol.upper()})
        try:
            return float(data["openInterest"])
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"bad open interest payload: {e}") from e

    async def fetch_open_interest_history(self, symbol: str, period: str = "1h", limit: int = 500) -> List[float]:
        data = await self.http.get_json(
            self.futures + "/futures/data/openInterestHist",
            {"symbol": symbol.upper(), "period": period, "limit": int(limit)},
        )
        try:
            return [float(r["sumOpenInterest"]) for r in data]
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"bad open interest history payload: {e}") from e
