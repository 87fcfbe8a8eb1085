from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .config import Config, StructureConfig
from .errors import DataUnavailable
from .indicators import compute_indicator_set, percent_rank, zscore_last
from .models import (
    Candle,
    Derivatives,
    Levels,
    Liquidations,
    MacroContext,
    MarketData,
    MarketSnapshot,
    Pivot,
    StressIndex,
    Structure,
    VolumeContext,
)
from .pivots import detect_pivots, of_kind
from .regime import classify_regime
from .sessions import session_of_hour, utc_dt
from .trendlines import fit_envelope, fit_trendline, last_two_trendline
from .volume_profile import build_volume_profile
from .vwap import anchored_vwap, vwap_band

log = logging.getLogger("analysis")

T = TypeVar("T")

# 15m bars per window for the relative-volume labels; 96 bars make the 24h base.
REL_VOL_WINDOWS = {"15m": 1, "1h": 4, "4h": 16}
REL_VOL_DAY_BARS = 96


def _run_section(snapshot: MarketSnapshot, name: str, fn: Callable[[], T]) -> Optional[T]:
    try:
        return fn()
    except Exception as e:
        log.warning("section_failed section=%s err=%s", name, e)
        snapshot.errors.append(f"{name}: {e}")
        return None


# --- derivatives ---------------------------------------------------------------

def funding_z(rates: Sequence[float], window: int = 42) -> float:
    return zscore_last(list(rates)[-window:])


def oi_stats(current: Optional[float], history: Optional[Sequence[float]]) -> Tuple[Optional[float], Optional[float]]:
    """Percent rank of the current OI in its history, and its change vs ~24h ago."""
    if current is None or not history:
        return None, None
    rank = percent_rank(history, current)
    base = history[-25] if len(history) > 25 else history[0]
    delta = round((current - base) / base * 100.0, 1) if base else None
    return rank, delta


def liquidations_from(raw: Optional[Dict[str, float]]) -> Liquidations:
    raw = raw or {}
    return Liquidations(**{k: float(raw.get(k) or 0.0) for k in Liquidations.__dataclass_fields__})


def build_derivatives(data: MarketData, funding_window: int = 42) -> Derivatives:
    if data.funding_rates is None and data.oi_current is None and data.liquidations is None:
        raise DataUnavailable("no funding, open interest or liquidation data")
    rank, delta = oi_stats(data.oi_current, data.oi_history)
    return Derivatives(
        funding_z=funding_z(data.funding_rates, funding_window) if data.funding_rates else 0.0,
        oi_current=data.oi_current,
        oi_pct_rank=rank,
        oi_delta_24h=delta,
        liquidations=liquidations_from(data.liquidations),
    )


# --- volume --------------------------------------------------------------------

def volume_label(ratio: float) -> str:
    if ratio > 2:
        return "very high"
    if ratio > 1.2:
        return "high"
    if ratio < 0.5:
        return "low"
    return "normal"


def relative_volume(bars15: Sequence[Candle]) -> Dict[str, str]:
    if len(bars15) < REL_VOL_DAY_BARS:
        raise DataUnavailable(f"need {REL_VOL_DAY_BARS} 15m bars, got {len(bars15)}")
    day = bars15[-REL_VOL_DAY_BARS:]
    total = sum(c.volume for c in day)
    out: Dict[str, str] = {}
    for tf, n in REL_VOL_WINDOWS.items():
        base = total / (REL_VOL_DAY_BARS / n)
        window = sum(c.volume for c in day[-n:])
        out[tf] = volume_label(window / base if base > 0 else 0.0)
    return out


def _rel_last(values: List[float]) -> float:
    if len(values) < 21:
        return 1.0
    mean20 = sum(values[-21:-1]) / 20.0
    return round(values[-1] / (mean20 or 1.0), 2)


def session_relative_volume(bars1h: Sequence[Candle]) -> Dict[str, float]:
    """Newest hourly volume of each session against its previous 20 hours."""
    buckets: Dict[str, List[float]] = {"asia": [], "eu": [], "us": []}
    for c in bars1h:
        name = session_of_hour(utc_dt(c.open_time_ms).hour)
        if name:
            buckets[name].append(c.volume)
    return {k: _rel_last(v) for k, v in buckets.items()}


def build_volume_context(data: MarketData) -> VolumeContext:
    return VolumeContext(
        relative=relative_volume(data.candles.get("15m") or []),
        session_rel_vol=session_relative_volume(data.candles.get("1h") or []),
    )


def stress_index(
    derivatives: Optional[Derivatives],
    volume: Optional[VolumeContext],
    liq_divisor: float = 1e6,
) -> StressIndex:
    fz = derivatives.funding_z if derivatives else 0.0
    oi_rank = derivatives.oi_pct_rank if derivatives else None
    liq = derivatives.liquidations if derivatives else Liquidations()

    bias = min(3.0, abs(fz))
    lev = min(3.0, (oi_rank - 50.0) / 10.0) if oi_rank else 0.0
    flag = volume.relative.get("15m") if volume else None
    vol = 2.0 if flag == "very high" else 1.0 if flag == "high" else 0.0
    liq_score = min(2.0, abs(liq.long24h - liq.short24h) / liq_divisor)
    value = bias + lev + vol + liq_score
    return StressIndex(
        value=round(value, 2),
        components={"bias": bias, "leverage": lev, "volume": vol, "liquidations": liq_score},
    )


# --- levels and structure ------------------------------------------------------

def build_levels(bars1d: Sequence[Candle], bars1h: Sequence[Candle]) -> Levels:
    if len(bars1d) < 2:
        raise DataUnavailable("need at least 2 daily bars for pivots")
    if not bars1h:
        raise DataUnavailable("no 1h bars for HH20/LL20")
    y = bars1d[-2]
    pivot = (y.high + y.low + y.close) / 3.0
    last20 = bars1h[-20:]
    return Levels(
        daily_pivot=pivot,
        daily_r1=2 * pivot - y.low,
        daily_s1=2 * pivot - y.high,
        hh20=max(c.high for c in last20),
        ll20=min(c.low for c in last20),
        rolling_7d_high=max(c.high for c in bars1d[-7:]),
        rolling_7d_low=min(c.low for c in bars1d[-7:]),
        rolling_30d_high=max(c.high for c in bars1d[-30:]),
        rolling_30d_low=min(c.low for c in bars1d[-30:]),
    )


def _latest(pivots: Sequence[Pivot], kind: str) -> Optional[Pivot]:
    confirmed = [p for p in of_kind(pivots, kind) if p.confirmed]
    return confirmed[-1] if confirmed else None


def build_structure(bars1d: Sequence[Candle], price: float, cfg: StructureConfig) -> Structure:
    """Daily swing structure: pivots, containment and last-two lines, neckline, cycle AVWAP."""
    if len(bars1d) < 3:
        raise DataUnavailable(f"need daily history for structure, got {len(bars1d)} bars")
    highs = [c.high for c in bars1d]
    lows = [c.low for c in bars1d]
    ts = [c.open_time_ms for c in bars1d]
    last_index = len(bars1d) - 1

    pivots = detect_pivots(
        cfg.pivot_mode, highs, lows, fractal_n=cfg.fractal_n, zigzag_pct=cfg.zigzag_pct, timestamps=ts
    )
    line_kw = dict(
        lookback=cfg.lookback_bars,
        min_gap_bars=cfg.min_gap_bars,
        min_slope=cfg.min_slope,
        max_slope=cfg.max_slope,
        tolerance_pct=cfg.tolerance_pct,
        max_violations=cfg.max_violations,
    )
    if cfg.containment == "bars":
        env_kw = {k: v for k, v in line_kw.items() if k != "min_gap_bars"}
        support = fit_envelope(pivots, "LOW", lows, min_recent_bars=cfg.envelope_recent_bars, **env_kw)
        resistance = fit_envelope(pivots, "HIGH", highs, min_recent_bars=cfg.envelope_recent_bars, **env_kw)
    else:
        support = fit_trendline(pivots, "LOW", last_index, **line_kw)
        resistance = fit_trendline(pivots, "HIGH", last_index, **line_kw)
    two_kw = dict(
        lookback=cfg.lookback_bars,
        min_gap_bars=cfg.last_two_min_gap_bars,
        min_delta_pct=cfg.last_two_min_delta_pct,
    )
    support_two = last_two_trendline(pivots, "LOW", last_index, **two_kw)
    resistance_two = last_two_trendline(pivots, "HIGH", last_index, **two_kw)

    window_start = last_index - cfg.lookback_bars + 1
    in_window = [p for p in pivots if p.index >= window_start]
    swing_high = _latest(in_window, "HIGH")
    swing_low = _latest(in_window, "LOW")

    confirmed_lows = [p for p in of_kind(pivots, "LOW") if p.confirmed]
    l1 = l2 = None
    neckline = None
    if len(confirmed_lows) >= 2:
        l1, l2 = confirmed_lows[-2], confirmed_lows[-1]
        neckline = max(highs[l1.index : l2.index + 1])

    avwap = None
    anchor_ms = None
    anchor = confirmed_lows[-1] if confirmed_lows else None
    if anchor is not None:
        avwap = anchored_vwap(bars1d, anchor.index)
        anchor_ms = anchor.timestamp_ms

    return Structure(
        pivots=list(pivots),
        support=support,
        resistance=resistance,
        support_last_two=support_two,
        resistance_last_two=resistance_two,
        last_swing_high=swing_high.price if swing_high else None,
        last_swing_low=swing_low.price if swing_low else None,
        swing_l1=l1.price if l1 else None,
        swing_l2=l2.price if l2 else None,
        neckline=neckline,
        neck_break=bool(neckline is not None and price > neckline),
        avwap=avwap,
        avwap_anchor_ms=anchor_ms,
    )


def build_macro(raw: Optional[Dict[str, float]]) -> MacroContext:
    if not raw:
        raise DataUnavailable("global market data unavailable")
    return MacroContext(
        total_mcap_t=float(raw.get("total_mcap_t") or 0.0),
        mcap_24h_pct=float(raw.get("mcap_24h_pct") or 0.0),
        btc_dominance=float(raw.get("btc_dominance") or 0.0),
        eth_dominance=float(raw.get("eth_dominance") or 0.0),
    )


# --- snapshot ------------------------------------------------------------------

def _price_of(data: MarketData) -> float:
    if data.last_price:
        return float(data.last_price)
    for tf in ("15m", "1h", "4h", "1d"):
        bars = data.candles.get(tf)
        if bars:
            return bars[-1].close
    raise DataUnavailable("no price: last price and every kline fetch failed")


def build_snapshot(data: MarketData, cfg: Config) -> MarketSnapshot:
    """Assemble every analysis section from fetched data.

    Sections are independent: a failure is logged, recorded in
    `snapshot.errors`, and leaves that section absent. Only a missing
    price aborts, via DataUnavailable.
    """
    price = _price_of(data)
    snap = MarketSnapshot(symbol=data.symbol, timestamp_ms=data.timestamp_ms, price=price, errors=list(data.errors))

    for tf, bars in data.candles.items():
        if not bars:
            continue
        ind = _run_section(snap, f"indicators[{tf}]", lambda b=bars, t=tf: compute_indicator_set(b, with_adx=(t == "4h")))
        if ind is not None:
            snap.indicators[tf] = ind

    snap.derivatives = _run_section(snap, "derivatives", lambda: build_derivatives(data, cfg.provider.funding_window))
    snap.volume = _run_section(snap, "volume", lambda: build_volume_context(data))
    snap.stress = _run_section(
        snap, "stress", lambda: stress_index(snap.derivatives, snap.volume, cfg.alerts.stress_liq_divisor)
    )

    for tf in ("4h", "1d", "1w"):
        bars = data.candles.get(tf)
        if not bars:
            continue
        prof = _run_section(
            snap, f"profile[{tf}]", lambda b=bars: build_volume_profile(b, cfg.structure.profile_bucket)
        )
        if prof is not None:
            snap.profiles[tf] = prof

    if data.session_bars is not None:
        snap.session_vwap = _run_section(snap, "session_vwap", lambda: vwap_band(data.session_bars, price))
    if data.week_bars is not None:
        snap.weekly_vwap = _run_section(snap, "weekly_vwap", lambda: vwap_band(data.week_bars, price))

    bars1d = data.candles.get("1d") or []
    snap.levels = _run_section(snap, "levels", lambda: build_levels(bars1d, data.candles.get("1h") or []))
    snap.structure = _run_section(snap, "structure", lambda: build_structure(bars1d, price, cfg.structure))
    snap.macro = _run_section(snap, "macro", lambda: build_macro(data.macro))
    snap.sentiment = data.fear_greed

    snap.regime = classify_regime(snap, cfg.regime)
    log.info(
        "snapshot_built symbol=%s price=%.2f sections_failed=%d",
        snap.symbol, snap.price, len(snap.errors),
    )
    return snap
