import pytest

from play_alert_bot.analysis import (
    build_levels,
    build_snapshot,
    build_structure,
    oi_stats,
    relative_volume,
    session_relative_volume,
    stress_index,
)
from play_alert_bot.config import StructureConfig, build_config
from play_alert_bot.errors import DataUnavailable
from play_alert_bot.models import Candle, Derivatives, Liquidations, MarketData, VolumeContext


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0, step_ms: int = 900_000) -> Candle:
    base = idx * step_ms
    return Candle(
        open_time_ms=base,
        close_time_ms=base + step_ms - 1,
        open=o,
        high=h,
        low=l,
        close=c,
        volume=v,
    )


def _path(*legs):
    """Piecewise-linear closes through (index, price) waypoints."""
    out = []
    for (i0, p0), (i1, p1) in zip(legs, legs[1:]):
        for i in range(i0, i1):
            out.append(p0 + (p1 - p0) * (i - i0) / (i1 - i0))
    out.append(float(legs[-1][1]))
    return out


def test_partial_failure_keeps_what_it_can():
    data = MarketData(
        symbol="ETHUSDT",
        timestamp_ms=1_715_000_000_000,
        candles={"15m": [_c(i, 100, 101, 99, 100) for i in range(30)]},
        last_price=100.5,
        errors=["klines[1h]: boom"],
    )
    snap = build_snapshot(data, build_config())
    assert snap.price == 100.5
    assert "15m" in snap.indicators
    assert snap.derivatives is None
    assert snap.volume is None
    assert snap.levels is None
    assert snap.structure is None
    assert snap.regime.htf_trend == "RANGE"
    failed = {e.split(":")[0] for e in snap.errors}
    assert {"klines[1h]", "derivatives", "volume", "levels", "structure", "macro"} <= failed


def test_snapshot_falls_back_to_last_close():
    data = MarketData(symbol="ETHUSDT", timestamp_ms=0, candles={"1h": [_c(0, 1, 2, 0.5, 1.5, step_ms=3_600_000)]})
    assert build_snapshot(data, build_config()).price == 1.5


def test_snapshot_without_any_price_raises():
    with pytest.raises(DataUnavailable):
        build_snapshot(MarketData(symbol="ETHUSDT", timestamp_ms=0), build_config())


def test_oi_stats_rank_and_24h_delta():
    history = [float(x) for x in range(1, 31)]
    assert oi_stats(30.0, history) == (100.0, 400.0)
    assert oi_stats(None, history) == (None, None)
    # short history compares against its first value
    assert oi_stats(12.0, [10.0, 11.0]) == (100.0, 20.0)


def test_relative_volume_labels():
    bars = [_c(i, 1, 1, 1, 1, v=1.0) for i in range(95)] + [_c(95, 1, 1, 1, 1, v=3.0)]
    assert relative_volume(bars) == {"15m": "very high", "1h": "high", "4h": "normal"}
    with pytest.raises(DataUnavailable):
        relative_volume(bars[:50])


def test_session_relative_volume_needs_history():
    short = [_c(i, 1, 1, 1, 1, v=5.0, step_ms=3_600_000) for i in range(24)]
    assert session_relative_volume(short) == {"asia": 1.0, "eu": 1.0, "us": 1.0}

    bars = [_c(i, 1, 1, 1, 1, v=10.0, step_ms=3_600_000) for i in range(24 * 5)]
    # newest asia hour is 07:00 UTC on the fifth day
    idx = 24 * 4 + 7
    bars[idx] = _c(idx, 1, 1, 1, 1, v=20.0, step_ms=3_600_000)
    rel = session_relative_volume(bars)
    assert rel["asia"] == 2.0
    assert rel["eu"] == 1.0


def test_stress_index_saturates_at_ten():
    d = Derivatives(
        funding_z=4.0, oi_current=1.0, oi_pct_rank=80.0, oi_delta_24h=0.0,
        liquidations=Liquidations(long24h=5e6, short24h=0.0),
    )
    vol = VolumeContext(relative={"15m": "very high"}, session_rel_vol={})
    s = stress_index(d, vol)
    assert s.value == 10.0
    assert s.components == {"bias": 3.0, "leverage": 3.0, "volume": 2.0, "liquidations": 2.0}
    assert s.high_risk

    assert stress_index(None, None).value == 0.0


def test_levels_use_yesterdays_daily_bar():
    day = 86_400_000
    bars1d = [_c(0, 95, 110, 90, 100, step_ms=day), _c(1, 100, 120, 99, 118, step_ms=day)]
    bars1h = [_c(i, 100, 100 + i, 100 - i, 100, step_ms=3_600_000) for i in range(30)]
    lv = build_levels(bars1d, bars1h)
    assert lv.daily_pivot == pytest.approx(100.0)
    assert lv.daily_r1 == pytest.approx(110.0)
    assert lv.daily_s1 == pytest.approx(90.0)
    assert lv.hh20 == 129
    assert lv.ll20 == 71
    assert lv.rolling_7d_high == 120
    with pytest.raises(DataUnavailable):
        build_levels(bars1d[:1], bars1h)


def test_double_bottom_structure():
    closes = _path((0, 100), (10, 80), (18, 96), (25, 82), (35, 102))
    day = 86_400_000
    bars = [_c(i, p, p, p, p, step_ms=day) for i, p in enumerate(closes)]
    st = build_structure(bars, price=closes[-1], cfg=StructureConfig())

    assert st.swing_l1 == 80
    assert st.swing_l2 == 82
    assert st.neckline == 96
    assert st.neck_break
    assert st.avwap == pytest.approx(92.0)
    assert st.avwap_anchor_ms == 25 * day
    assert st.last_swing_high == 96
    assert st.last_swing_low == 82
    assert st.resistance is not None
    assert st.resistance.slope < 0
    assert st.pivots[-1].confirmed is False


def test_structure_needs_history():
    with pytest.raises(DataUnavailable):
        build_structure([_c(0, 1, 1, 1, 1)], price=1.0, cfg=StructureConfig())
