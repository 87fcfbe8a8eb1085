from __future__ import annotations

from typing import List, Optional, Sequence

from .models import Pivot, TrendLine


def _breaches(price: float, line_price: float, kind: str, tolerance_pct: float) -> bool:
    if kind == "LOW":
        return price < line_price * (1.0 - tolerance_pct)
    return price > line_price * (1.0 + tolerance_pct)


def count_violations(
    slope: float,
    intercept: float,
    kind: str,
    start_index: int,
    pivots: Sequence[Pivot],
    tolerance_pct: float,
    bars: Optional[Sequence[float]] = None,
) -> int:
    """Breaches of the line from `start_index` onward.

    Checked against same-kind pivots, or against every bar value when `bars`
    (highs for resistance, lows for support) is given.
    """
    violations = 0
    if bars is not None:
        for k in range(start_index, len(bars)):
            if _breaches(bars[k], slope * k + intercept, kind, tolerance_pct):
                violations += 1
        return violations
    for p in pivots:
        if p.kind != kind or p.index < start_index:
            continue
        if _breaches(p.price, slope * p.index + intercept, kind, tolerance_pct):
            violations += 1
    return violations


def fit_trendline(
    pivots: Sequence[Pivot],
    kind: str,
    last_index: int,
    *,
    lookback: int = 60,
    min_gap_bars: int = 5,
    min_slope: float = 0.02,
    max_slope: float = 800.0,
    tolerance_pct: float = 0.006,
    max_violations: int = 2,
) -> Optional[TrendLine]:
    """Best containment line through two same-kind pivots.

    `kind` is LOW for support, HIGH for resistance. Support keeps the steepest
    rising survivor, resistance the steepest falling one; ties go to the pair
    found first. Returns None when no pair survives.
    """
    window_start = last_index - lookback + 1
    cands: List[Pivot] = [p for p in pivots if p.kind == kind and p.index >= window_start]
    cands.sort(key=lambda p: p.index)
    if len(cands) < 2:
        return None

    best: Optional[TrendLine] = None
    for a in range(len(cands) - 1):
        for b in range(a + 1, len(cands)):
            pa, pb = cands[a], cands[b]
            gap = pb.index - pa.index
            if gap < min_gap_bars or gap <= 0:
                continue
            slope = (pb.price - pa.price) / gap
            if abs(slope) < min_slope or abs(slope) > max_slope:
                continue
            intercept = pa.price - slope * pa.index

            violations = count_violations(slope, intercept, kind, pa.index, cands, tolerance_pct)
            if violations > max_violations:
                continue

            if best is not None:
                if kind == "LOW" and slope <= best.slope:
                    continue
                if kind == "HIGH" and slope >= best.slope:
                    continue
            best = TrendLine(
                slope=slope,
                intercept=intercept,
                anchor_a=pa,
                anchor_b=pb,
                projected_price_today=slope * last_index + intercept,
                violations=violations,
                mode="containment",
            )
    return best


def last_two_trendline(
    pivots: Sequence[Pivot],
    kind: str,
    last_index: int,
    *,
    lookback: int = 60,
    min_gap_bars: int = 5,
    min_delta_pct: float = 0.02,
) -> Optional[TrendLine]:
    """Line through the newest pivot and the closest earlier one far enough away.

    Falls back to the previous pivot when none clears the gap and delta
    guards. No containment test.
    """
    window_start = last_index - lookback + 1
    cands = sorted((p for p in pivots if p.kind == kind and p.index >= window_start), key=lambda p: p.index)
    if len(cands) < 2:
        return None
    pb = cands[-1]
    pa: Optional[Pivot] = None
    for cand in reversed(cands[:-1]):
        gap = pb.index - cand.index
        delta = abs(pb.price - cand.price) / max(cand.price, 1.0)
        if gap >= min_gap_bars and delta >= min_delta_pct:
            pa = cand
            break
    if pa is None:
        pa = cands[-2]
    if pa.index == pb.index:
        return None

    slope = (pb.price - pa.price) / (pb.index - pa.index)
    intercept = pa.price - slope * pa.index
    return TrendLine(
        slope=slope,
        intercept=intercept,
        anchor_a=pa,
        anchor_b=pb,
        projected_price_today=slope * last_index + intercept,
        violations=0,
        mode="last_two",
    )


def fit_envelope(
    pivots: Sequence[Pivot],
    kind: str,
    bars: Sequence[float],
    *,
    lookback: int = 60,
    min_recent_bars: int = 7,
    min_slope: float = 0.02,
    max_slope: float = 800.0,
    tolerance_pct: float = 0.006,
    max_violations: int = 2,
) -> Optional[TrendLine]:
    """Bar-envelope variant of the containment fit.

    Every bar in the lookback window (lows for support, highs for resistance)
    counts toward violations, at least one anchor must sit in the last
    `min_recent_bars` bars, and the survivor hugging price closest today wins:
    highest projection for support, lowest for resistance.
    """
    last_index = len(bars) - 1
    window_start = max(0, last_index - lookback + 1)
    min_recent = last_index - min_recent_bars + 1
    cands = sorted((p for p in pivots if p.kind == kind and p.index >= window_start), key=lambda p: p.index)

    best: Optional[TrendLine] = None
    for a in range(len(cands) - 1):
        for b in range(a + 1, len(cands)):
            pa, pb = cands[a], cands[b]
            if pb.index == pa.index:
                continue
            if pa.index < min_recent and pb.index < min_recent:
                continue
            slope = (pb.price - pa.price) / (pb.index - pa.index)
            if abs(slope) < min_slope or abs(slope) > max_slope:
                continue
            intercept = pa.price - slope * pa.index

            violations = count_violations(slope, intercept, kind, window_start, cands, tolerance_pct, bars)
            if violations > max_violations:
                continue

            today = slope * last_index + intercept
            if best is not None:
                if kind == "LOW" and today <= best.projected_price_today:
                    continue
                if kind == "HIGH" and today >= best.projected_price_today:
                    continue
            best = TrendLine(
                slope=slope,
                intercept=intercept,
                anchor_a=pa,
                anchor_b=pb,
                projected_price_today=today,
                violations=violations,
                mode="envelope",
            )
    return best
