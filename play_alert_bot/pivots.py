from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .models import Pivot


def _ts(timestamps: Optional[Sequence[int]], idx: int) -> int:
    if timestamps is None or idx >= len(timestamps):
        return idx
    return int(timestamps[idx])


def fractal_pivots(
    highs: Sequence[float],
    lows: Sequence[float],
    n: int = 2,
    timestamps: Optional[Sequence[int]] = None,
) -> List[Pivot]:
    """Fixed-window fractal pivots.

    Bar i is a HIGH pivot when high[i] is the max of high[i-n..i+n] and no bar
    to its left ties it (a plateau pivots once, on its first bar). Lows mirror
    this. The newest n bars lack lookahead and never pivot.
    """
    out: List[Pivot] = []
    if n <= 0:
        return out
    size = min(len(highs), len(lows))
    for i in range(n, size - n):
        h = highs[i]
        if h == max(highs[i - n : i + n + 1]) and h > max(highs[i - n : i]):
            out.append(Pivot(index=i, timestamp_ms=_ts(timestamps, i), price=float(h), kind="HIGH"))
        lo = lows[i]
        if lo == min(lows[i - n : i + n + 1]) and lo < min(lows[i - n : i]):
            out.append(Pivot(index=i, timestamp_ms=_ts(timestamps, i), price=float(lo), kind="LOW"))
    return out


def classify_pivots(points: Sequence[Tuple[int, float, bool, str]]) -> List[str]:
    """Label each pivot HIGH/LOW by comparing it with its neighbours in the sequence.

    Boundary pivots compare against their single neighbour. A pivot that is
    neither (not possible for an alternating sequence) keeps its hint.
    """
    kinds: List[str] = []
    for k, (_, price, _, hint) in enumerate(points):
        neighbours = []
        if k > 0:
            neighbours.append(points[k - 1][1])
        if k + 1 < len(points):
            neighbours.append(points[k + 1][1])
        if not neighbours:
            kinds.append(hint)
        elif all(price >= p for p in neighbours):
            kinds.append("HIGH")
        elif all(price <= p for p in neighbours):
            kinds.append("LOW")
        else:
            kinds.append(hint)
    return kinds


def zigzag_pivots(
    highs: Sequence[float],
    lows: Sequence[float],
    pct: float = 0.06,
    timestamps: Optional[Sequence[int]] = None,
) -> List[Pivot]:
    """Percentage-reversal zigzag.

    A pivot is confirmed at the running extreme of a leg once price reverses
    by at least `pct` (a fraction) from it. The open leg's extreme is appended
    unconfirmed. Until the first reversal fixes a leg direction nothing is
    emitted, so a flat series has no pivots.
    """
    size = min(len(highs), len(lows))
    if size < 2 or pct <= 0:
        return []

    points: List[Tuple[int, float, bool, str]] = []
    direction = 0  # 1 = up leg, -1 = down leg
    hi_idx = 0
    lo_idx = 0

    for i in range(1, size):
        if direction == 0:
            if highs[i] > highs[hi_idx]:
                hi_idx = i
            if lows[i] < lows[lo_idx]:
                lo_idx = i
            if lo_idx < i and highs[i] >= lows[lo_idx] * (1.0 + pct):
                points.append((lo_idx, float(lows[lo_idx]), True, "LOW"))
                direction = 1
                hi_idx = max(range(lo_idx, i + 1), key=lambda j: (highs[j], -j))
            elif hi_idx < i and lows[i] <= highs[hi_idx] * (1.0 - pct):
                points.append((hi_idx, float(highs[hi_idx]), True, "HIGH"))
                direction = -1
                lo_idx = min(range(hi_idx, i + 1), key=lambda j: (lows[j], j))
        elif direction == 1:
            if highs[i] > highs[hi_idx]:
                hi_idx = i
            elif lows[i] <= highs[hi_idx] * (1.0 - pct):
                points.append((hi_idx, float(highs[hi_idx]), True, "HIGH"))
                direction = -1
                lo_idx = i
        else:
            if lows[i] < lows[lo_idx]:
                lo_idx = i
            elif highs[i] >= lows[lo_idx] * (1.0 + pct):
                points.append((lo_idx, float(lows[lo_idx]), True, "LOW"))
                direction = 1
                hi_idx = i

    if direction == 1 and hi_idx != points[-1][0]:
        points.append((hi_idx, float(highs[hi_idx]), False, "HIGH"))
    elif direction == -1 and lo_idx != points[-1][0]:
        points.append((lo_idx, float(lows[lo_idx]), False, "LOW"))

    kinds = classify_pivots(points)
    return [
        Pivot(index=idx, timestamp_ms=_ts(timestamps, idx), price=price, kind=kind, confirmed=confirmed)
        for (idx, price, confirmed, _), kind in zip(points, kinds)
    ]


def detect_pivots(
    mode: str,
    highs: Sequence[float],
    lows: Sequence[float],
    *,
    fractal_n: int = 2,
    zigzag_pct: float = 0.06,
    timestamps: Optional[Sequence[int]] = None,
) -> List[Pivot]:
    mode = (mode or "zigzag").lower()
    if mode == "fractal":
        return fractal_pivots(highs, lows, fractal_n, timestamps)
    if mode == "zigzag":
        return zigzag_pivots(highs, lows, zigzag_pct, timestamps)
    raise ValueError(f"Unsupported pivot mode: {mode} (use 'zigzag' or 'fractal')")


def of_kind(pivots: Sequence[Pivot], kind: str) -> List[Pivot]:
    return [p for p in pivots if p.kind == kind]
