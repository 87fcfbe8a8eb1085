from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from .config import RulesConfig
from .models import MarketSnapshot, Play, SignalCheck
from .sessions import DAY_MS, utc_dt
from .vwap import band_width_pct


@dataclass(frozen=True)
class Abstain:
    reasons: Tuple[str, ...]


Outcome = Union[List[Play], Abstain]


@dataclass(frozen=True)
class Rule:
    id: int
    name: str
    style: str  # trend | reversion | breakout | contrarian
    evaluate: Callable[[MarketSnapshot, RulesConfig], Outcome]


def _near(level: Optional[float], price: float, max_pct: float) -> bool:
    return bool(level) and bool(price) and abs(level - price) / price * 100.0 <= max_pct


def _abstain(*reasons: str) -> Abstain:
    return Abstain(tuple(r for r in reasons if r))


def _make(rule_id: int, direction: str, entry, stop: float, tp1: float, lev, ref: Optional[float] = None) -> Play:
    rule = RULES_BY_ID[rule_id]
    return Play(
        id=rule_id,
        name=rule.name,
        direction=direction,
        style=rule.style,
        entry_zone=tuple(entry),
        stop=stop,
        targets=(tp1,),
        leverage_range=tuple(lev),
        reference_level=ref,
    )


def break_retest(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    hh20 = snap.levels.hh20 if snap.levels else None
    if not hh20:
        return _abstain("HH20 missing")
    near = _near(hh20, price, cfg.near_level_pct)
    broke = price > hh20 * (1 + cfg.breakout_confirm_pct / 100.0)
    if not (near and broke):
        return _abstain(
            "" if near else f"price not within {cfg.near_level_pct:g}% of HH20",
            "" if broke else f"price not > HH20 by {cfg.breakout_confirm_pct:g}%",
        )
    return [_make(1, "LONG", (hh20 * 1.0005, hh20 * 1.0015), hh20 * 0.992, hh20 * 1.015, (5, 15), ref=hh20)]


def avwap_reclaim(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    st = snap.structure
    avwap = st.avwap if st else None
    if not avwap:
        return _abstain("AVWAP missing")
    anchor = st.avwap_anchor_ms if st and st.avwap_anchor_ms is not None else 0
    age_days = (snap.timestamp_ms - anchor) / DAY_MS
    near = _near(avwap, price, cfg.near_level_pct)
    fresh = age_days <= cfg.avwap_max_age_days
    reclaimed = price > avwap * (1 + cfg.breakout_confirm_pct / 100.0)
    if not (near and fresh and reclaimed):
        return _abstain(
            "" if near else f"price not near AVWAP (<={cfg.near_level_pct:g}%)",
            "" if fresh else f"anchor too old ({age_days:.1f}d)",
            "" if reclaimed else f"no reclaim (>{cfg.breakout_confirm_pct:g}%)",
        )
    h4 = snap.indicator("4h")
    atr4 = (h4.atr_pct if h4 else 0.0) / 100.0
    return [_make(2, "LONG", (avwap, avwap * 1.001), avwap * (1 - atr4), price * 1.015, (3, 8), ref=avwap)]


def funding_fade(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    fz = snap.derivatives.funding_z if snap.derivatives else 0.0
    if abs(fz) < cfg.funding_z_min:
        return _abstain(f"|fundingZ| {abs(fz):.2f} < {cfg.funding_z_min:g}")
    direction = "SHORT" if fz > 0 else "LONG"
    s = 1 if direction == "LONG" else -1
    return [_make(3, direction, (price,), price * (1 - s * 0.006), price * (1 + s * 0.0075), (5, 15))]


def liq_sweep(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    liq = snap.liquidations
    big = max(liq.long1h, liq.short1h)
    m15 = snap.indicator("15m")
    atr15 = m15.atr_pct if m15 else 0.0
    big_ok = big >= cfg.liq_sweep_min_usd
    calm = m15 is not None and atr15 <= cfg.liq_sweep_max_atr_pct
    if not (big_ok and calm):
        return _abstain(
            "" if big_ok else f"liquidations {big / 1e6:,.0f}M < {cfg.liq_sweep_min_usd / 1e6:,.0f}M",
            "" if calm else f"ATR15 {atr15:.2f}% > {cfg.liq_sweep_max_atr_pct:g}%",
        )
    direction = "LONG" if liq.short1h > liq.long1h else "SHORT"
    s = 1 if direction == "LONG" else -1
    return [_make(4, direction, (price - price * 0.0007 * s,), price - price * 0.004 * s, price + price * 0.004 * s, (10, 50))]


def high_oi_box(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    d = snap.derivatives
    if d is None or d.oi_pct_rank is None or d.oi_delta_24h is None:
        return _abstain("open interest unavailable")
    crowded = d.oi_pct_rank >= cfg.oi_box_min_pct_rank
    flat = abs(d.oi_delta_24h) <= cfg.oi_box_max_delta_pct
    if not (crowded and flat):
        return _abstain(
            "" if crowded else f"OI30d {d.oi_pct_rank:.0f}% < {cfg.oi_box_min_pct_rank:g}%",
            "" if flat else f"|oiD24h| {abs(d.oi_delta_24h):.2f}% > {cfg.oi_box_max_delta_pct:g}%",
        )
    return [_make(5, "BREAK", (price,), price * 0.982, price * 1.04, (5, 15))]


def ema_pullback(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    h4 = snap.indicator("4h")
    d1 = snap.indicator("1d")
    adx4h = (h4.adx14 or 0.0) if h4 else 0.0
    ema50_4h = h4.ema50 if h4 else 0.0
    trending = adx4h > cfg.pullback_min_adx
    uptrend = bool(d1) and d1.ema50 > d1.ema200
    pulled = bool(ema50_4h) and price < ema50_4h
    if not (trending and uptrend and pulled):
        return _abstain(
            "" if trending else f"ADX4h {adx4h:.0f} <= {cfg.pullback_min_adx:g}",
            "" if uptrend else "EMA50d <= EMA200d",
            "" if pulled else "price >= EMA50 4h",
        )
    entry = ema50_4h * 0.999
    return [_make(6, "LONG", (entry,), ema50_4h * 0.99, entry * 1.02, (3, 10))]


def opening_range(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    minute = utc_dt(snap.timestamp_ms).minute
    m15 = snap.indicator("15m")
    atr15 = m15.atr_pct if m15 else 0.0
    asia = snap.volume.session_rel_vol.get("asia", 0.0) if snap.volume else 0.0
    on_time = minute == cfg.orb_minute
    quiet = m15 is not None and atr15 < cfg.orb_max_atr_pct
    active = asia > cfg.orb_min_asia_rel_vol
    if not (on_time and quiet and active):
        return _abstain(
            "" if on_time else f"minute != {cfg.orb_minute}",
            "" if quiet else f"ATR15 {atr15:.2f}% >= {cfg.orb_max_atr_pct:g}%",
            "" if active else f"Asia rel vol {asia:.2f} <= {cfg.orb_min_asia_rel_vol:g}",
        )
    sl = atr15 / 100.0
    return [_make(7, "BREAK", (price,), price * (1 - sl), price * (1 + sl * 1.5), (10, 25))]


def vwap_fade(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    band = snap.session_vwap
    band_w = band_width_pct(band)
    if band is None or not band_w or band_w >= cfg.fade_max_band_pct:
        shown = f"{band_w:.2f}%" if band_w is not None else "n/a"
        return _abstain(f"bandW {shown} >= {cfg.fade_max_band_pct:g}% or missing")
    up, lo = band.upper_1, band.lower_1
    plays: List[Play] = []
    above = bool(up) and price > up and _near(up, price, cfg.fade_max_distance_pct)
    below = bool(lo) and price < lo and _near(lo, price, cfg.fade_max_distance_pct)
    if above:
        plays.append(_make(8, "SHORT", (price,), price * 1.007, band.vwap, (5, 20), ref=up))
    if below:
        plays.append(_make(8, "LONG", (price,), price * 0.993, band.vwap, (5, 20), ref=lo))
    if not plays:
        return _abstain("no upper fade condition", "no lower fade condition")
    return plays


def session_kick(snap: MarketSnapshot, cfg: RulesConfig) -> Outcome:
    price = snap.price
    hour = utc_dt(snap.timestamp_ms).hour
    h1 = snap.indicator("1h")
    roc1h = h1.roc10 if h1 else 0.0
    ses = snap.volume.session_rel_vol if snap.volume else {}
    asia = ses.get("asia", 0.0)
    eu = ses.get("eu", 0.0)
    on_time = hour in cfg.kick_hours
    moving = abs(roc1h) >= cfg.kick_min_roc_pct
    active = asia > cfg.kick_min_session_rel_vol or eu > cfg.kick_min_session_rel_vol
    if not (on_time and moving and active):
        hours = " or ".join(str(h) for h in cfg.kick_hours)
        return _abstain(
            "" if on_time else f"hour not {hours} UTC",
            "" if moving else f"|ROC1h| {abs(roc1h):.2f}% < {cfg.kick_min_roc_pct:g}%",
            "" if active else f"session vol low (ASIA {asia:.2f}, EU {eu:.2f})",
        )
    direction = "LONG" if roc1h > 0 else "SHORT"
    s = 1 if direction == "LONG" else -1
    return [_make(9, direction, (price,), price * (1 - s * 0.004), price * (1 + s * 0.01), (5, 15))]


RULES: List[Rule] = [
    Rule(1, "Break-Retest", "trend", break_retest),
    Rule(2, "AVWAP Reclaim", "trend", avwap_reclaim),
    Rule(3, "Funding Fade", "contrarian", funding_fade),
    Rule(4, "Liq-Sweep", "reversion", liq_sweep),
    Rule(5, "High-OI Box", "breakout", high_oi_box),
    Rule(6, "EMA Pull-back", "trend", ema_pullback),
    Rule(7, "Opening-Range", "breakout", opening_range),
    Rule(8, "VWAP Fade", "reversion", vwap_fade),
    Rule(9, "Session Kick", "trend", session_kick),
]

RULES_BY_ID = {r.id: r for r in RULES}


def evaluate_signals(
    snapshot: MarketSnapshot,
    cfg: Optional[RulesConfig] = None,
    rules: Optional[List[Rule]] = None,
) -> Tuple[List[Play], List[SignalCheck]]:
    """Run every rule in catalogue order. Each rule yields plays or reasons, never silence."""
    cfg = cfg or RulesConfig()
    plays: List[Play] = []
    checks: List[SignalCheck] = []
    for rule in rules or RULES:
        outcome = rule.evaluate(snapshot, cfg)
        if isinstance(outcome, Abstain):
            reasons = outcome.reasons or ("conditions not met",)
            checks.append(SignalCheck(rule_id=rule.id, name=rule.name, detected=False, reasons=reasons))
            continue
        plays.extend(outcome)
        checks.append(SignalCheck(rule_id=rule.id, name=rule.name, detected=True))
    return plays, checks
