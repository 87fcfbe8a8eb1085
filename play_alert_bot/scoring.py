from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .config import ScoringConfig
from .indicators import round_half_up
from .models import MarketSnapshot, Play, QualityScore
from .vwap import band_width_pct


def _sign(v: float, tol: float) -> int:
    if v > tol:
        return 1
    if v < -tol:
        return -1
    return 0


def alignment_factor(snapshot: MarketSnapshot, tol: float = 0.0005) -> int:
    """Agreement of price vs EMA50 across 15m/1h/4h. A missing EMA is neutral."""
    price = snapshot.price
    signs = []
    for tf in ("15m", "1h", "4h"):
        ind = snapshot.indicator(tf)
        if ind is None or not ind.ema50 or not price:
            signs.append(0)
        else:
            signs.append(_sign((price - ind.ema50) / price, tol))
    a, b, c = signs
    if a != 0 and a == b == c:
        return 2
    if (a != 0 and a == b) or (a != 0 and a == c) or (b != 0 and b == c):
        return 1
    return 0


def momentum_factor(snapshot: MarketSnapshot) -> int:
    m15 = snapshot.indicator("15m")
    if m15 is None:
        return 0
    impulse = max(abs(m15.roc10), abs(m15.roc20))
    if impulse >= m15.atr_pct * 2:
        return 2
    if impulse >= m15.atr_pct:
        return 1
    return 0


def crowd_factor(snapshot: MarketSnapshot, direction: str) -> int:
    """High 15m volume, funding leaning against the play, liquidations favouring it."""
    if direction not in ("LONG", "SHORT"):
        return 0
    vol_high = bool(snapshot.volume and snapshot.volume.is_high("15m"))
    fz = snapshot.derivatives.funding_z if snapshot.derivatives else 0.0
    liq = snapshot.liquidations
    if direction == "LONG":
        fund_opp = fz < 0
        liq_bias = liq.short1h > liq.long1h
    else:
        fund_opp = fz > 0
        liq_bias = liq.long1h > liq.short1h
    hits = sum(1 for x in (vol_high, fund_opp, liq_bias) if x)
    if hits == 3:
        return 2
    if hits == 2:
        return 1
    return 0


def structure_tolerance_pct(snapshot: MarketSnapshot, cfg: ScoringConfig) -> float:
    m15 = snapshot.indicator("15m")
    atr15 = m15.atr_pct if m15 else 0.0
    return max(cfg.structure_atr_mult * atr15, cfg.structure_min_pct)


def structure_factor(snapshot: MarketSnapshot, cfg: ScoringConfig) -> int:
    price = snapshot.price
    if not price:
        return 0
    tol = structure_tolerance_pct(snapshot, cfg)
    poc4h = snapshot.profiles.get("4h")
    levels = (
        snapshot.session_vwap.vwap if snapshot.session_vwap else None,
        poc4h.point_of_control if poc4h else None,
        snapshot.structure.neckline if snapshot.structure else None,
    )
    hits = sum(1 for lvl in levels if lvl and abs(price - lvl) / price * 100.0 <= tol)
    if hits >= 2:
        return 2
    return hits


def risk_factor(snapshot: MarketSnapshot) -> int:
    if snapshot.stress is None:
        return 1
    s = snapshot.stress.value
    if s < 3:
        return 2
    if s < 5:
        return 1
    return 0


def weighted_score(factors: Sequence[int], weights: Sequence[float]) -> int:
    """Scale weighted factors (each 0..2) onto 0..10, rounding half up."""
    max_raw = sum(weights) * 2
    if max_raw <= 0:
        return 0
    weighted = sum(f * w for f, w in zip(factors, weights))
    return max(0, min(10, round_half_up(weighted / max_raw * 10)))


def catalyst_bonus(play: Play, snapshot: MarketSnapshot, cfg: ScoringConfig) -> int:
    band_w = band_width_pct(snapshot.session_vwap)
    neck_break = snapshot.neck_break
    if play.id == 2:
        if neck_break:
            return 2 if band_w is not None and band_w <= 1.5 else 1
        return 0
    if play.id == 4:
        liq = snapshot.liquidations
        liq1h = max(liq.long1h, liq.short1h)
        if liq1h >= cfg.liq_bonus_strong or neck_break:
            return 2
        if liq1h >= cfg.liq_bonus_weak:
            return 1
        return 0
    if play.id == 8:
        if neck_break and band_w is not None:
            if band_w <= 1.5:
                return 2
            if band_w <= 2.5:
                return 1
        return 0
    return 0


def compute_factors(play: Play, snapshot: MarketSnapshot, cfg: ScoringConfig) -> Tuple[int, int, int, int, int]:
    return (
        alignment_factor(snapshot, cfg.alignment_tolerance),
        momentum_factor(snapshot),
        crowd_factor(snapshot, play.direction),
        structure_factor(snapshot, cfg),
        risk_factor(snapshot),
    )


def score_play(play: Play, snapshot: MarketSnapshot, cfg: Optional[ScoringConfig] = None) -> QualityScore:
    cfg = cfg or ScoringConfig()
    factors = compute_factors(play, snapshot, cfg)
    base = weighted_score(factors, cfg.weights_for(play.id))
    bonus = catalyst_bonus(play, snapshot, cfg)
    return QualityScore(value=min(10, base + bonus), factors=factors, bonus=bonus)
