import itertools

import pytest

from play_alert_bot.config import ScoringConfig
from play_alert_bot.models import (
    Derivatives,
    IndicatorSet,
    Liquidations,
    MarketSnapshot,
    Play,
    StressIndex,
    Structure,
    VolumeContext,
    VolumeProfile,
    VwapBand,
)
from play_alert_bot.scoring import (
    alignment_factor,
    catalyst_bonus,
    crowd_factor,
    momentum_factor,
    risk_factor,
    score_play,
    structure_factor,
    weighted_score,
)


def _ind(ema50=0.0, atr_pct=0.5, roc10=0.0, roc20=0.0) -> IndicatorSet:
    return IndicatorSet(
        ema50=ema50, ema200=0.0, rsi14=50.0, atr_pct=atr_pct, macd_hist=0.0, roc10=roc10, roc20=roc20
    )


def _band(vwap: float, sigma: float) -> VwapBand:
    return VwapBand(
        vwap=vwap, sigma=sigma,
        upper_1=vwap + sigma, lower_1=vwap - sigma,
        upper_1_5=vwap + 1.5 * sigma, lower_1_5=vwap - 1.5 * sigma,
        upper_2=vwap + 2 * sigma, lower_2=vwap - 2 * sigma,
    )


def _structure(neckline=None, neck_break=False) -> Structure:
    return Structure(
        pivots=[], support=None, resistance=None, support_last_two=None, resistance_last_two=None,
        last_swing_high=None, last_swing_low=None, swing_l1=None, swing_l2=None,
        neckline=neckline, neck_break=neck_break, avwap=None, avwap_anchor_ms=None,
    )


def _play(play_id=1, direction="LONG") -> Play:
    return Play(
        id=play_id, name="Test", direction=direction, style="trend",
        entry_zone=(100.0,), stop=99.0, targets=(101.0,), leverage_range=(5, 15),
    )


def _snap(price=100.0) -> MarketSnapshot:
    return MarketSnapshot(symbol="ETHUSDT", timestamp_ms=0, price=price)


WEIGHT_SETS = [
    [1.0, 1.0, 1.0, 1.0, 1.0],
    [0.7, 1.0, 1.5, 0.6, 1.2],
    [1.0, 1.2, 1.2, 0.9, 0.7],
]


def test_weighted_score_is_integer_in_range():
    for w in WEIGHT_SETS:
        for factors in itertools.product((0, 1, 2), repeat=5):
            s = weighted_score(factors, w)
            assert isinstance(s, int)
            assert 0 <= s <= 10
    assert weighted_score((2, 2, 2, 2, 2), WEIGHT_SETS[1]) == 10
    assert weighted_score((0, 0, 0, 0, 0), WEIGHT_SETS[1]) == 0


def test_raising_a_factor_never_lowers_the_score():
    for w in WEIGHT_SETS:
        for factors in itertools.product((0, 1, 2), repeat=5):
            for i in range(5):
                if factors[i] != 0:
                    continue
                raised = list(factors)
                raised[i] = 2
                assert weighted_score(raised, w) >= weighted_score(factors, w)


def test_weighted_score_rounds_half_up():
    # 5 of 10 weighted points -> exactly 5.0; 1 of 4 -> 2.5 -> 3
    assert weighted_score((1, 1, 1, 1, 1), [1, 1, 1, 1, 1]) == 5
    assert weighted_score((1, 0, 0, 0, 0), [1, 1, 0, 0, 0]) == 3


def test_alignment_dead_zone_and_missing_ema():
    snap = _snap(100.0)
    snap.indicators = {"15m": _ind(99), "1h": _ind(98), "4h": _ind(97)}
    assert alignment_factor(snap) == 2

    snap.indicators = {"15m": _ind(99), "1h": _ind(98)}
    assert alignment_factor(snap) == 1

    # within 0.05% of price counts as no sign
    snap.indicators = {"15m": _ind(99.99), "1h": _ind(100.01), "4h": _ind(99.98)}
    assert alignment_factor(snap) == 0


def test_momentum_against_atr():
    snap = _snap()
    assert momentum_factor(snap) == 0
    snap.indicators = {"15m": _ind(atr_pct=0.5, roc10=1.2)}
    assert momentum_factor(snap) == 2
    snap.indicators = {"15m": _ind(atr_pct=0.5, roc20=-0.6)}
    assert momentum_factor(snap) == 1
    snap.indicators = {"15m": _ind(atr_pct=0.5, roc10=0.2)}
    assert momentum_factor(snap) == 0


def test_crowd_is_neutral_for_break_plays():
    snap = _snap()
    snap.volume = VolumeContext(relative={"15m": "very high"}, session_rel_vol={})
    snap.derivatives = Derivatives(
        funding_z=-2.5, oi_current=None, oi_pct_rank=None, oi_delta_24h=None,
        liquidations=Liquidations(long1h=1e6, short1h=5e6),
    )
    assert crowd_factor(snap, "LONG") == 2
    assert crowd_factor(snap, "SHORT") == 0
    assert crowd_factor(snap, "BREAK") == 0


def test_crowd_missing_derivatives_counts_zero_funding():
    snap = _snap()
    snap.volume = VolumeContext(relative={"15m": "high"}, session_rel_vol={})
    assert crowd_factor(snap, "LONG") == 0


def test_structure_confluence():
    snap = _snap(2000.0)
    snap.session_vwap = _band(2001.0, 5.0)
    snap.profiles = {"4h": VolumeProfile(point_of_control=2000.0, buckets={2000.0: 1.0}, bucket_width=50)}
    snap.structure = _structure(neckline=2500.0)
    assert structure_factor(snap, ScoringConfig()) == 2

    snap.profiles = {}
    assert structure_factor(snap, ScoringConfig()) == 1

    # ATR widens the tolerance: 0.35 * 4% = 1.4% reaches the neckline at +1.25%
    snap.structure = _structure(neckline=2025.0)
    snap.session_vwap = None
    assert structure_factor(snap, ScoringConfig()) == 0
    snap.indicators = {"15m": _ind(atr_pct=4.0)}
    assert structure_factor(snap, ScoringConfig()) == 1


def test_risk_factor_policy():
    snap = _snap()
    assert risk_factor(snap) == 1
    snap.stress = StressIndex(value=2.9, components={})
    assert risk_factor(snap) == 2
    snap.stress = StressIndex(value=4.0, components={})
    assert risk_factor(snap) == 1
    snap.stress = StressIndex(value=6.0, components={})
    assert risk_factor(snap) == 0


def test_catalyst_bonuses():
    cfg = ScoringConfig()
    snap = _snap(100.0)
    snap.structure = _structure(neckline=95.0, neck_break=True)
    snap.session_vwap = _band(100.0, 2.0)  # width 2%
    assert catalyst_bonus(_play(2), snap, cfg) == 1
    assert catalyst_bonus(_play(8), snap, cfg) == 1
    snap.session_vwap = _band(100.0, 1.0)  # width 1%
    assert catalyst_bonus(_play(2), snap, cfg) == 2
    assert catalyst_bonus(_play(8), snap, cfg) == 2
    assert catalyst_bonus(_play(1), snap, cfg) == 0

    snap.structure = _structure()
    snap.derivatives = Derivatives(
        funding_z=0.0, oi_current=None, oi_pct_rank=None, oi_delta_24h=None,
        liquidations=Liquidations(long1h=45e6),
    )
    assert catalyst_bonus(_play(4), snap, cfg) == 1
    assert catalyst_bonus(_play(2), snap, cfg) == 0


def test_score_play_adds_bonus_and_clamps():
    snap = _snap(100.0)
    snap.indicators = {"15m": _ind(99, atr_pct=0.5, roc10=2.0), "1h": _ind(99), "4h": _ind(99)}
    snap.volume = VolumeContext(relative={"15m": "high"}, session_rel_vol={})
    snap.derivatives = Derivatives(
        funding_z=-3.0, oi_current=None, oi_pct_rank=None, oi_delta_24h=None,
        liquidations=Liquidations(long1h=0.0, short1h=90e6),
    )
    snap.session_vwap = _band(100.0, 0.5)
    snap.structure = _structure(neckline=100.2, neck_break=True)
    snap.stress = StressIndex(value=1.0, components={})

    q = score_play(_play(4, "LONG"), snap)
    assert q.factors == (2, 2, 2, 2, 2)
    assert q.bonus == 2
    assert q.value == 10
    assert q.below_gate is False

    snap.stress = StressIndex(value=9.0, components={})
    q = score_play(_play(6, "LONG"), snap)
    # weights 0.9, 1.1, 1.0, 1.0, 1.0 -> 8.0 of 10.0 weighted points
    assert q.factors[4] == 0
    assert q.value == pytest.approx(8)
