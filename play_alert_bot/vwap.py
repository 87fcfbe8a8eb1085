from __future__ import annotations
import math
from typing import Optional, Sequence

from .models import Candle, VwapBand


def vwap_band(candles: Sequence[Candle], fallback_price: float) -> VwapBand:
    """Volume-weighted OHLC4 price with 1/1.5/2 sigma bands.

    Without volume the band collapses onto `fallback_price` with sigma 0.
    """
    v_sum = 0.0
    pv_sum = 0.0
    p2v_sum = 0.0
    for c in candles:
        px = (c.open + c.high + c.low + c.close) / 4.0
        v_sum += c.volume
        pv_sum += px * c.volume
        p2v_sum += px * px * c.volume

    if v_sum > 0:
        vwap = pv_sum / v_sum
        variance = max(p2v_sum / v_sum - vwap * vwap, 0.0)
    else:
        vwap = float(fallback_price)
        variance = 0.0
    sigma = math.sqrt(variance)
    return VwapBand(
        vwap=vwap,
        sigma=sigma,
        upper_1=vwap + sigma,
        lower_1=vwap - sigma,
        upper_1_5=vwap + 1.5 * sigma,
        lower_1_5=vwap - 1.5 * sigma,
        upper_2=vwap + 2.0 * sigma,
        lower_2=vwap - 2.0 * sigma,
    )


def anchored_vwap(candles: Sequence[Candle], anchor_index: int) -> Optional[float]:
    if anchor_index < 0 or anchor_index >= len(candles):
        return None
    window = candles[anchor_index:]
    band = vwap_band(window, fallback_price=window[-1].close)
    return band.vwap


def band_width_pct(band: Optional[VwapBand]) -> Optional[float]:
    if band is None:
        return None
    return band.width_pct
