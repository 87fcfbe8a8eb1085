import asyncio

import pytest

from play_alert_bot.config import build_config
from play_alert_bot.errors import DataUnavailable
from play_alert_bot.providers.binance import PAGE_LIMIT, BinanceProvider, parse_klines
from play_alert_bot.providers.collect import collect_market_data
from play_alert_bot.providers.context import ContextProvider


class FakeHttp:
    """Routes get_json by URL suffix; records every call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    async def get_json(self, url, params=None):
        self.calls.append((url, dict(params or {})))
        for suffix, handler in self.routes.items():
            if url.endswith(suffix):
                return handler(params or {}) if callable(handler) else handler
        raise DataUnavailable(f"no route for {url}")


def _row(open_ms, price=100.0, step=60_000):
    return [open_ms, str(price), str(price + 1), str(price - 1), str(price), "10", open_ms + step - 1]


def test_parse_klines_reads_binance_rows():
    candles = parse_klines([_row(0, 100.0)])
    c = candles[0]
    assert (c.open, c.high, c.low, c.close, c.volume) == (100.0, 101.0, 99.0, 100.0, 10.0)
    assert c.close_time_ms == 59_999
    with pytest.raises(DataUnavailable):
        parse_klines({"code": -1121, "msg": "Invalid symbol."})


def test_klines_range_pages_past_the_limit():
    start = 0
    total = PAGE_LIMIT + 5

    def klines(params):
        first = (params["startTime"] - start) // 60_000
        n = min(PAGE_LIMIT, total - first)
        return [_row(start + (first + i) * 60_000) for i in range(n)]

    http = FakeHttp({"/api/v3/klines": klines})
    bars = asyncio.run(BinanceProvider(http).fetch_klines_range("ethusdt", "1m", start, start + total * 60_000))
    assert len(bars) == total
    assert len(http.calls) == 2
    assert http.calls[1][1]["startTime"] == PAGE_LIMIT * 60_000
    assert http.calls[0][1]["symbol"] == "ETHUSDT"


def test_bad_payloads_become_data_unavailable():
    http = FakeHttp({
        "/ticker/price": {"msg": "nope"},
        "/fundingRate": [{"fundingRate": "0.0001"}, {"oops": 1}],
    })
    b = BinanceProvider(http)
    with pytest.raises(DataUnavailable):
        asyncio.run(b.fetch_last_price("ETHUSDT"))
    with pytest.raises(DataUnavailable):
        asyncio.run(b.fetch_funding_rates("ETHUSDT"))


def test_context_parsing():
    http = FakeHttp({
        "/liqs": {"data": [{"symbol": "BTC", "long1h": 9}, {"symbol": "ETH", "long1h": "2e6", "short24h": 5}]},
        "/global": {"data": {
            "total_market_cap": {"usd": 2.456e12},
            "market_cap_change_percentage_24h_usd": -1.234,
            "market_cap_percentage": {"btc": 52.346, "eth": 16.789},
        }},
        "/fng/?limit=1": {"data": [{"value": "55", "value_classification": "Greed"}]},
    })
    ctx = ContextProvider(
        http, liquidations_url="https://x/liqs", global_url="https://x/global",
        fear_greed_url="https://x/fng/?limit=1",
    )
    liq = asyncio.run(ctx.fetch_liquidations("eth"))
    assert liq["long1h"] == 2e6
    assert liq["short24h"] == 5.0
    assert liq["short1h"] == 0.0
    assert asyncio.run(ctx.fetch_liquidations("SOL"))["long1h"] == 0.0

    assert asyncio.run(ctx.fetch_global()) == {
        "total_mcap_t": 2.46, "mcap_24h_pct": -1.23, "btc_dominance": 52.35, "eth_dominance": 16.79,
    }
    assert asyncio.run(ctx.fetch_fear_greed()) == "55 · Greed"


def test_liquidations_without_feed_url():
    with pytest.raises(DataUnavailable):
        asyncio.run(ContextProvider(FakeHttp({})).fetch_liquidations("ETH"))


def test_collect_records_failures_per_section():
    now = 1_715_000_000_000
    http = FakeHttp({
        "/api/v3/klines": lambda p: [_row(now - 120_000), _row(now - 60_000)],
        "/ticker/price": {"price": "3000.5"},
        "/fundingRate": [{"fundingRate": "0.0001"}] * 3,
    })
    cfg = build_config()
    data = asyncio.run(collect_market_data(BinanceProvider(http), ContextProvider(http), cfg, now))

    assert data.last_price == 3000.5
    assert set(data.candles) == {"15m", "1h", "4h", "1d", "1w"}
    assert len(data.session_bars) == 2
    assert data.funding_rates == [0.0001] * 3
    assert data.oi_current is None
    assert data.liquidations is None
    failed = {e.split(":")[0] for e in data.errors}
    assert failed == {"open_interest", "open_interest_hist", "liquidations", "macro", "fear_greed"}


def test_malformed_kline_rows_become_data_unavailable():
    for bad in ([[1, "2"]], [{"open": 1}], [None], [_row(0)[:6] + ["x"]]):
        with pytest.raises(DataUnavailable):
            parse_klines(bad)


def test_one_malformed_timeframe_leaves_siblings_intact():
    now = 1_715_000_000_000

    def klines(params):
        if params.get("interval") == "1w":
            return [[1, "2"]]
        return [_row(now - 120_000), _row(now - 60_000)]

    http = FakeHttp({
        "/api/v3/klines": klines,
        "/ticker/price": {"price": "3000.5"},
        "/fundingRate": [{"fundingRate": "0.0001"}] * 3,
        "/global": {"data": {"total_market_cap": 5}},
        "/fng/?limit=1": {"data": ["55"]},
    })
    ctx = ContextProvider(http, global_url="https://x/global", fear_greed_url="https://x/fng/?limit=1")
    data = asyncio.run(collect_market_data(BinanceProvider(http), ctx, build_config(), now))

    assert set(data.candles) == {"15m", "1h", "4h", "1d"}
    assert len(data.session_bars) == 2
    assert len(data.week_bars) == 2
    assert data.last_price == 3000.5
    assert data.funding_rates == [0.0001] * 3
    failed = {e.split(":")[0] for e in data.errors}
    assert "klines[1w]" in failed
    assert {"macro", "fear_greed"} <= failed
