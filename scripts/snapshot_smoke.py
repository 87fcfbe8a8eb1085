from __future__ import annotations

import math

from play_alert_bot.analysis import build_snapshot
from play_alert_bot.config import build_config
from play_alert_bot.formatters import check_report
from play_alert_bot.gating import apply_gates
from play_alert_bot.models import Candle, MarketData
from play_alert_bot.sessions import INTERVAL_MS
from play_alert_bot.signals import evaluate_signals

NOW_MS = 1_715_076_000_000  # 2024-05-07 10:00 UTC


def candle(open_ms: int, step_ms: int, price: float, vol: float = 10.0) -> Candle:
    return Candle(
        open_time_ms=open_ms,
        close_time_ms=open_ms + step_ms - 1,
        open=price,
        high=price * 1.002,
        low=price * 0.998,
        close=price,
        volume=vol,
    )


def wave(tf: str, n: int, base: float = 3000.0, amp: float = 0.08, period: int = 40):
    """Sine wave with slow drift, ending just before NOW_MS."""
    step = INTERVAL_MS[tf]
    start = NOW_MS - n * step
    return [
        candle(start + i * step, step, base * (1 + amp * math.sin(i / period * 2 * math.pi) + i * 0.0004))
        for i in range(n)
    ]


def main():
    cfg = build_config()
    candles = {tf: wave(tf, 220 if tf == "1d" else 250) for tf in ("15m", "1h", "4h", "1d")}
    data = MarketData(
        symbol=cfg.app.symbol,
        timestamp_ms=NOW_MS,
        candles=candles,
        session_bars=wave("1m", 600, amp=0.004, period=120),
        week_bars=wave("15m", 136, amp=0.01),
        funding_rates=[0.0001] * 41 + [0.0004],
        oi_current=105.0,
        oi_history=[100.0 + i * 0.01 for i in range(500)],
        liquidations={"long1h": 30e6, "short1h": 4e6, "long24h": 60e6, "short24h": 20e6},
        macro={"total_mcap_t": 2.4, "mcap_24h_pct": 1.1, "btc_dominance": 52.0, "eth_dominance": 16.5},
        fear_greed="61 · Greed",
    )

    snap = build_snapshot(data, cfg)
    print("price", round(snap.price, 2), "regime", snap.regime)
    print("stress", snap.stress)
    st = snap.structure
    if st is not None:
        print("pivots", [(p.index, p.kind, round(p.price, 1), p.confirmed) for p in st.pivots])
        print("support", st.support)
        print("resistance", st.resistance)
        print("neckline", st.neckline, "avwap", st.avwap)

    plays, checks = evaluate_signals(snap, cfg.rules)
    apply_gates(plays, snap, snap.regime, cfg.scoring)
    for line in check_report(snap, snap.regime, checks, plays):
        print(line)
    print("errors", snap.errors)


if __name__ == "__main__":
    main()
