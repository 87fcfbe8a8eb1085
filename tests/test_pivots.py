import pytest

from play_alert_bot.pivots import classify_pivots, detect_pivots, fractal_pivots, of_kind, zigzag_pivots


def test_zigzag_rising_one_percent_has_single_low_and_no_confirmed_high():
    closes = [100.0 * (1.01 ** i) for i in range(30)]
    pivots = zigzag_pivots(closes, closes, pct=0.06)

    lows = of_kind(pivots, "LOW")
    assert len(lows) == 1
    assert lows[0].index == 0
    assert lows[0].confirmed
    assert not [p for p in of_kind(pivots, "HIGH") if p.confirmed]


def test_zigzag_confirms_reversal_and_leaves_open_leg_unconfirmed():
    prices = [100, 105, 110, 115, 120, 112, 105, 100]
    pivots = zigzag_pivots(prices, prices, pct=0.06, timestamps=[i * 1000 for i in range(8)])
    assert [(p.index, p.kind, p.confirmed) for p in pivots] == [
        (0, "LOW", True),
        (4, "HIGH", True),
        (7, "LOW", False),
    ]
    assert pivots[1].timestamp_ms == 4000
    assert pivots[1].price == 120


def test_fractal_lag_newest_bars_never_pivot():
    highs = [1, 2, 3, 2, 1, 2, 5, 4]
    lows = [h - 0.5 for h in highs]
    pivots = fractal_pivots(highs, lows, n=2)
    assert [(p.index, p.kind) for p in pivots] == [(2, "HIGH"), (4, "LOW")]
    assert all(p.index < len(highs) - 2 for p in pivots)


def test_fractal_plateau_pivots_once():
    highs = [1, 2, 3, 3, 2, 1, 1]
    lows = [0, 1, 2, 2, 1, 0, 0]
    pivots = of_kind(fractal_pivots(highs, lows, n=2), "HIGH")
    assert [p.index for p in pivots] == [2]


def test_classify_pivots_boundaries():
    points = [(0, 10.0, True, "?"), (5, 20.0, True, "?"), (9, 15.0, False, "?")]
    assert classify_pivots(points) == ["LOW", "HIGH", "LOW"]
    assert classify_pivots([(0, 1.0, True, "HIGH")]) == ["HIGH"]


def test_detect_pivots_dispatch():
    prices = [100, 105, 110, 115, 120, 112, 105, 100]
    assert detect_pivots("zigzag", prices, prices, zigzag_pct=0.06) == zigzag_pivots(prices, prices, 0.06)
    assert detect_pivots("FRACTAL", prices, prices, fractal_n=2) == fractal_pivots(prices, prices, 2)
    with pytest.raises(ValueError):
        detect_pivots("renko", prices, prices)
