from __future__ import annotations
from typing import List, Optional, Sequence
import math

from .models import Candle, IndicatorSet


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def sma(values: Sequence[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def ema(values: Sequence[float], length: int) -> float:
    """SMA-seeded EMA over the whole series. 0.0 when the series is too short."""
    if length <= 0 or len(values) < length:
        return 0.0
    k = 2.0 / (length + 1.0)
    e = sum(values[:length]) / float(length)
    for x in values[length:]:
        e = x * k + e * (1.0 - k)
    return e


def rsi(closes: Sequence[float], length: int = 14) -> float:
    """Wilder RSI seeded by the simple average of the first `length` deltas.

    With no losses (including a series too short to have any deltas) the
    result is 100.
    """
    if length <= 0 or len(closes) < length + 1:
        return 100.0
    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (length - 1) + max(ch, 0.0)) / length
        avg_loss = (avg_loss * (length - 1) + max(-ch, 0.0)) / length
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def _true_ranges(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> List[float]:
    return [true_range(highs[i], lows[i], closes[i - 1]) for i in range(1, len(closes))]


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> float:
    # Simple mean of the last `length` true ranges (not Wilder-smoothed).
    if length <= 0 or len(closes) < length + 1:
        return 0.0
    trs = _true_ranges(highs, lows, closes)
    return sum(trs[-length:]) / float(length)


def atr_pct(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> float:
    last = closes[-1] if closes and closes[-1] else 1.0
    return atr(highs, lows, closes, length) / last * 100.0


def _wilder_smooth(raw: List[float], length: int) -> List[float]:
    s = sum(raw[:length])
    out = [s]
    for x in raw[length:]:
        s = s - (s / length) + x
        out.append(s)
    return out


def adx(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> float:
    """Wilder ADX. Zero denominators are replaced by 1; result is in [0, 100]."""
    if length <= 0 or len(closes) < length + 1:
        return 0.0
    plus_dm: List[float] = []
    minus_dm: List[float] = []
    for i in range(1, len(closes)):
        up = highs[i] - highs[i - 1]
        dn = lows[i - 1] - lows[i]
        plus_dm.append(up if (up > dn and up > 0) else 0.0)
        minus_dm.append(dn if (dn > up and dn > 0) else 0.0)
    trs = _true_ranges(highs, lows, closes)

    tr_s = _wilder_smooth(trs, length)
    plus_s = _wilder_smooth(plus_dm, length)
    minus_s = _wilder_smooth(minus_dm, length)

    dx: List[float] = []
    for tr_v, p_v, m_v in zip(tr_s, plus_s, minus_s):
        tr_v = tr_v or 1.0
        plus_di = p_v / tr_v * 100.0
        minus_di = m_v / tr_v * 100.0
        dx.append(abs(plus_di - minus_di) / ((plus_di + minus_di) or 1.0) * 100.0)

    tail = dx[-length:]
    return min(100.0, max(0.0, sum(tail) / len(tail)))


def roc(values: Sequence[float], n: int) -> float:
    if n <= 0 or len(values) < n + 1:
        return 0.0
    base = values[-(n + 1)]
    if base == 0:
        return 0.0
    return (values[-1] - base) / base * 100.0


def macd_hist(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> float:
    line = [ema(closes[: i + 1], fast) - ema(closes[: i + 1], slow) for i in range(len(closes))]
    if not line:
        return 0.0
    return line[-1] - ema(line, signal)


def pct_change(new: float, old: float) -> Optional[float]:
    if old == 0:
        return None
    return (new - old) / old * 100.0


def zscore_last(values: Sequence[float]) -> float:
    """Z-score of the newest value against the whole window (population sigma)."""
    if not values:
        return 0.0
    if max(values) == min(values):
        return 0.0
    n = len(values)
    mean = math.fsum(values) / n
    sd = math.sqrt(math.fsum((x - mean) ** 2 for x in values) / n)
    if sd == 0:
        return 0.0
    return round((values[-1] - mean) / sd, 2)


def percent_rank(history: Sequence[float], value: float) -> float:
    """Share of `history` at or below `value`, in percent."""
    if not history:
        return 0.0
    below = sum(1 for v in history if v <= value)
    return round(below / len(history) * 100.0, 1)


def compute_indicator_set(candles: Sequence[Candle], *, with_adx: bool = False) -> IndicatorSet:
    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    return IndicatorSet(
        ema50=ema(closes, 50),
        ema200=ema(closes, 200),
        rsi14=rsi(closes, 14),
        atr_pct=atr_pct(highs, lows, closes, 14) if closes else 0.0,
        macd_hist=macd_hist(closes),
        roc10=roc(closes, 10),
        roc20=roc(closes, 20),
        adx14=adx(highs, lows, closes, 14) if with_adx else None,
    )
