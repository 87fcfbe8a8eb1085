from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from ..config import Config
from ..errors import DataUnavailable
from ..models import MarketData
from ..sessions import session_start_ms, week_start_ms
from .binance import BinanceProvider
from .context import ContextProvider

log = logging.getLogger("collect")

TIMEFRAMES = ("15m", "1h", "4h", "1d", "1w")


def _kline_limit(cfg: Config, tf: str) -> int:
    if tf == "1d":
        return cfg.provider.daily_limit
    if tf == "1w":
        return cfg.provider.weekly_limit
    return cfg.provider.kline_limit


async def collect_market_data(
    binance: BinanceProvider,
    context: ContextProvider,
    cfg: Config,
    now_ms: int,
) -> MarketData:
    """Fetch every input section concurrently.

    A failed section stays None and its cause lands in `data.errors`; only
    the caller decides whether the tick can proceed.
    """
    sym = cfg.app.symbol
    data = MarketData(symbol=sym, timestamp_ms=int(now_ms))
    sem = asyncio.Semaphore(max(1, int(cfg.provider.fetch_concurrency)))

    jobs: List[Tuple[str, Callable[[], Awaitable[Any]], Callable[[Any], None]]] = []
    for tf in TIMEFRAMES:
        jobs.append((
            f"klines[{tf}]",
            lambda tf=tf: binance.fetch_klines(sym, tf, _kline_limit(cfg, tf)),
            lambda v, tf=tf: data.candles.__setitem__(tf, v),
        ))
    jobs += [
        ("last_price", lambda: binance.fetch_last_price(sym), lambda v: setattr(data, "last_price", v)),
        (
            "session_bars",
            lambda: binance.fetch_klines_range(sym, "1m", session_start_ms(now_ms), now_ms),
            lambda v: setattr(data, "session_bars", v),
        ),
        (
            "week_bars",
            lambda: binance.fetch_klines_range(sym, "15m", week_start_ms(now_ms), now_ms),
            lambda v: setattr(data, "week_bars", v),
        ),
        ("funding", lambda: binance.fetch_funding_rates(sym), lambda v: setattr(data, "funding_rates", v)),
        ("open_interest", lambda: binance.fetch_open_interest(sym), lambda v: setattr(data, "oi_current", v)),
        (
            "open_interest_hist",
            lambda: binance.fetch_open_interest_history(sym, "1h", cfg.provider.oi_history_limit),
            lambda v: setattr(data, "oi_history", v),
        ),
        (
            "liquidations",
            lambda: context.fetch_liquidations(cfg.app.asset),
            lambda v: setattr(data, "liquidations", v),
        ),
        ("macro", context.fetch_global, lambda v: setattr(data, "macro", v)),
        ("fear_greed", context.fetch_fear_greed, lambda v: setattr(data, "fear_greed", v)),
    ]

    async def _one(name: str, fetch: Callable[[], Awaitable[Any]], store: Callable[[Any], None]) -> Optional[str]:
        try:
            async with sem:
                store(await fetch())
            return None
        except (DataUnavailable, ValueError) as e:
            return f"{name}: {e}"

    results = await asyncio.gather(*[_one(*job) for job in jobs])
    for err in results:
        if err is not None:
            log.warning("fetch_failed %s", err)
            data.errors.append(err)
    log.info(
        "collect_done symbol=%s sections=%d failed=%d",
        sym, len(jobs), sum(1 for e in results if e is not None),
    )
    return data
