from __future__ import annotations
import math
from typing import Dict, Sequence

from .models import Candle, VolumeProfile


def bucket_price(price: float, width: float) -> float:
    # Half-up rounding to the nearest multiple of `width`.
    return math.floor(price / width + 0.5) * width


def build_volume_profile(candles: Sequence[Candle], bucket_width: float = 50.0) -> VolumeProfile:
    """Accumulate volume per typical-price bucket; POC is the heaviest bucket.

    Ties keep the first-inserted bucket. An empty window has no POC.
    """
    if bucket_width <= 0:
        raise ValueError(f"bucket_width must be positive, got {bucket_width}")
    buckets: Dict[float, float] = {}
    for c in candles:
        key = bucket_price((c.high + c.low + c.close) / 3.0, bucket_width)
        buckets[key] = buckets.get(key, 0.0) + c.volume

    poc = None
    best = None
    for key, vol in buckets.items():
        if best is None or vol > best:
            poc, best = key, vol
    return VolumeProfile(point_of_control=poc, buckets=buckets, bucket_width=bucket_width)
