from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    close_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class IndicatorSet:
    ema50: float
    ema200: float
    rsi14: float
    atr_pct: float
    macd_hist: float
    roc10: float
    roc20: float
    adx14: Optional[float] = None


@dataclass(frozen=True)
class Pivot:
    index: int
    timestamp_ms: int
    price: float
    kind: str  # HIGH or LOW
    confirmed: bool = True


@dataclass(frozen=True)
class TrendLine:
    slope: float
    intercept: float
    anchor_a: Pivot
    anchor_b: Pivot
    projected_price_today: float
    violations: int = 0
    mode: str = "containment"  # containment | envelope | last_two

    def value_at(self, index: int) -> float:
        return self.slope * index + self.intercept


@dataclass(frozen=True)
class VolumeProfile:
    point_of_control: Optional[float]
    buckets: Dict[float, float]
    bucket_width: float


@dataclass(frozen=True)
class VwapBand:
    vwap: float
    sigma: float
    upper_1: float
    lower_1: float
    upper_1_5: float
    lower_1_5: float
    upper_2: float
    lower_2: float

    @property
    def width_pct(self) -> Optional[float]:
        if not self.vwap:
            return None
        return (self.upper_1 - self.lower_1) / (2.0 * self.vwap) * 100.0


@dataclass(frozen=True)
class Liquidations:
    long1h: float = 0.0
    short1h: float = 0.0
    long4h: float = 0.0
    short4h: float = 0.0
    long24h: float = 0.0
    short24h: float = 0.0


@dataclass(frozen=True)
class Derivatives:
    funding_z: float
    oi_current: Optional[float]
    oi_pct_rank: Optional[float]
    oi_delta_24h: Optional[float]
    liquidations: Liquidations


@dataclass(frozen=True)
class VolumeContext:
    relative: Dict[str, str]  # 15m/1h/4h -> low | normal | high | very high
    session_rel_vol: Dict[str, float]  # asia / eu / us

    def is_high(self, tf: str) -> bool:
        return self.relative.get(tf) in ("high", "very high")


@dataclass(frozen=True)
class StressIndex:
    value: float
    components: Dict[str, float]

    @property
    def high_risk(self) -> bool:
        return self.value >= 5.0


@dataclass(frozen=True)
class Levels:
    daily_pivot: float
    daily_r1: float
    daily_s1: float
    hh20: float
    ll20: float
    rolling_7d_high: float
    rolling_7d_low: float
    rolling_30d_high: float
    rolling_30d_low: float


@dataclass(frozen=True)
class Structure:
    pivots: List[Pivot]
    support: Optional[TrendLine]
    resistance: Optional[TrendLine]
    support_last_two: Optional[TrendLine]
    resistance_last_two: Optional[TrendLine]
    last_swing_high: Optional[float]
    last_swing_low: Optional[float]
    swing_l1: Optional[float]
    swing_l2: Optional[float]
    neckline: Optional[float]
    neck_break: bool
    avwap: Optional[float]
    avwap_anchor_ms: Optional[int]


@dataclass(frozen=True)
class MacroContext:
    total_mcap_t: float
    mcap_24h_pct: float
    btc_dominance: float
    eth_dominance: float


@dataclass(frozen=True)
class Regime:
    htf_trend: str  # UP | DOWN | RANGE
    adx_strong: bool
    ltf_compression: bool
    ltf_expansion: bool
    band_width_pct: Optional[float] = None
    atr15_pct: float = 0.0
    rel_vol15: Optional[str] = None


@dataclass(frozen=True)
class GateInfo:
    base_gate: int
    adjustment: int
    final_gate: int
    denied: bool


@dataclass(frozen=True)
class QualityScore:
    value: int
    factors: Tuple[int, int, int, int, int]
    bonus: int
    below_gate: bool = False
    gate: Optional[GateInfo] = None


@dataclass
class Play:
    id: int
    name: str
    direction: str  # LONG | SHORT | BREAK
    style: str  # trend | reversion | breakout | contrarian
    entry_zone: Tuple[float, ...]
    stop: float
    targets: Tuple[float, ...]
    leverage_range: Tuple[int, int]
    reference_level: Optional[float] = None
    quality: Optional[QualityScore] = None

    @property
    def below_gate(self) -> bool:
        return self.quality is None or self.quality.below_gate


@dataclass(frozen=True)
class SignalCheck:
    rule_id: int
    name: str
    detected: bool
    reasons: Tuple[str, ...] = ()


@dataclass
class MarketData:
    """Raw inputs for one tick. A None section means its fetch failed."""
    symbol: str
    timestamp_ms: int
    candles: Dict[str, List[Candle]] = field(default_factory=dict)
    last_price: Optional[float] = None
    session_bars: Optional[List[Candle]] = None
    week_bars: Optional[List[Candle]] = None
    funding_rates: Optional[List[float]] = None
    oi_current: Optional[float] = None
    oi_history: Optional[List[float]] = None
    liquidations: Optional[Dict[str, float]] = None
    macro: Optional[Dict[str, float]] = None
    fear_greed: Optional[str] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class MarketSnapshot:
    symbol: str
    timestamp_ms: int
    price: float
    indicators: Dict[str, IndicatorSet] = field(default_factory=dict)
    derivatives: Optional[Derivatives] = None
    volume: Optional[VolumeContext] = None
    stress: Optional[StressIndex] = None
    profiles: Dict[str, VolumeProfile] = field(default_factory=dict)
    session_vwap: Optional[VwapBand] = None
    weekly_vwap: Optional[VwapBand] = None
    levels: Optional[Levels] = None
    structure: Optional[Structure] = None
    macro: Optional[MacroContext] = None
    sentiment: Optional[str] = None
    regime: Optional[Regime] = None
    errors: List[str] = field(default_factory=list)

    def indicator(self, tf: str) -> Optional[IndicatorSet]:
        return self.indicators.get(tf)

    @property
    def neck_break(self) -> bool:
        return bool(self.structure and self.structure.neck_break)

    @property
    def liquidations(self) -> Liquidations:
        if self.derivatives is None:
            return Liquidations()
        return self.derivatives.liquidations
