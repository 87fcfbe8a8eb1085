from __future__ import annotations

import logging
from typing import Optional

from .config import RegimeConfig
from .models import MarketSnapshot, Regime
from .vwap import band_width_pct

log = logging.getLogger("regime")


def classify_regime(snapshot: MarketSnapshot, cfg: Optional[RegimeConfig] = None) -> Regime:
    """Coarse HTF trend plus LTF compression/expansion for the current snapshot.

    Missing indicator sets count as zeros, so absent HTF data falls through to
    RANGE and an absent band width blocks compression.
    """
    cfg = cfg or RegimeConfig()
    price = snapshot.price

    d1 = snapshot.indicator("1d")
    h4 = snapshot.indicator("4h")
    m15 = snapshot.indicator("15m")

    ema50d = d1.ema50 if d1 else 0.0
    ema200d = d1.ema200 if d1 else 0.0
    ema50_4h = h4.ema50 if h4 else 0.0
    adx4h = (h4.adx14 or 0.0) if h4 else 0.0
    atr15 = m15.atr_pct if m15 else 0.0
    roc15 = abs(m15.roc10) if m15 else 0.0

    rel15 = snapshot.volume.relative.get("15m") if snapshot.volume else None
    vol_high15 = rel15 in ("high", "very high")

    ema_up = bool(ema50d and ema200d and ema50d > ema200d)
    ema_down = bool(ema50d and ema200d and ema50d < ema200d)
    adx_strong = adx4h >= cfg.adx_strong
    above = bool(ema50_4h) and price > ema50_4h
    below = bool(ema50_4h) and price < ema50_4h

    htf = "RANGE"
    if (ema_up and above) or (adx_strong and above):
        htf = "UP"
    elif (ema_down and below) or (adx_strong and below):
        htf = "DOWN"

    bw = band_width_pct(snapshot.session_vwap)
    compression = bool(
        bw is not None
        and bw <= cfg.compression_band_pct
        and m15 is not None
        and atr15 <= cfg.compression_atr_pct
        and not vol_high15
    )
    expansion = (not compression) and ((m15 is not None and roc15 >= atr15) or vol_high15)

    regime = Regime(
        htf_trend=htf,
        adx_strong=adx_strong,
        ltf_compression=compression,
        ltf_expansion=bool(expansion),
        band_width_pct=bw,
        atr15_pct=atr15,
        rel_vol15=rel15,
    )
    log.debug(
        "regime htf=%s adx_strong=%s compression=%s expansion=%s band_w=%s atr15=%.2f",
        htf, adx_strong, compression, regime.ltf_expansion, bw, atr15,
    )
    return regime
