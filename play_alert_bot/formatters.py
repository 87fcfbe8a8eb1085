from __future__ import annotations

import html
from typing import Dict, List, Optional, Sequence

from .config import AlertsConfig
from .models import MarketSnapshot, Play, Regime, SignalCheck
from .sessions import fmt_local


def _esc(text) -> str:
    return html.escape(str(text), quote=False)


def _fmt_usd(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"${val:,.0f}"


def _fmt_num(val: Optional[float], digits: int = 2) -> str:
    if val is None:
        return "n/a"
    return f"{val:.{digits}f}"


def _quality(play: Play) -> str:
    q = play.quality.value if play.quality else "?"
    return f"{q}/10"


def position_size_usd(play: Play, risk_pct: float, account_equity: float) -> float:
    """Notional sized so that a stop-out loses `risk_pct` of equity (no leverage)."""
    entry = play.entry_zone[0]
    risk_usd = account_equity * (risk_pct / 100.0)
    dist = abs(entry - play.stop)
    qty = risk_usd / dist if dist else 0.0
    return qty * entry


def _snapshot_lines(snap: MarketSnapshot) -> List[str]:
    d = snap.derivatives
    h4 = snap.indicator("4h")
    vol = snap.volume
    return [
        f"• FundingZ <b>{_fmt_num(d.funding_z if d else None)}</b> | "
        f"OI30d <b>{_fmt_num(d.oi_pct_rank if d else None, 1)}%</b>",
        f"• ADX 4h <b>{_fmt_num(h4.adx14 if h4 else None, 1)}</b> | "
        f"Stress <b>{_fmt_num(snap.stress.value if snap.stress else None)}</b>",
        f"• EU vol <b>{_fmt_num(vol.session_rel_vol.get('eu') if vol else None)}</b> | "
        f"15 m vol <b>{_esc(vol.relative.get('15m', 'n/a') if vol else 'n/a')}</b>",
    ]


def _swings_line(snap: MarketSnapshot) -> Optional[str]:
    st = snap.structure
    if st is None or st.swing_l1 is None or st.swing_l2 is None:
        return None
    broken = "yes" if st.neck_break else "no"
    return (
        f"Swings ➜ L1 {_fmt_usd(st.swing_l1)} • L2 {_fmt_usd(st.swing_l2)} • "
        f"neckline {_fmt_usd(st.neckline)} (broken? {broken})"
    )


def format_play(play: Play, snap: MarketSnapshot, cfg: AlertsConfig, now_ms: int, asset: str = "ETH") -> str:
    icon = "🟢" if play.direction == "LONG" else "🔴" if play.direction == "SHORT" else "🟡"
    sub_gate = play.below_gate
    pos = position_size_usd(play, cfg.risk_pct, cfg.account_equity)
    lev_lo, lev_hi = play.leverage_range

    lines = [
        f"{icon} <b>{_esc(asset)} PERP | Play #{play.id} – {_esc(play.name)}</b>",
        f"<i>{_esc(fmt_local(now_ms, cfg.timezone))}</i>",
        "",
        f"<b>Direction:</b> {play.direction}",
        f"<b>Entry zone:</b> {' – '.join(_fmt_usd(v) for v in play.entry_zone)}",
        f"<b>Stop-loss:</b> {_fmt_usd(play.stop)}",
        f"<b>TP 1:</b> {_fmt_usd(play.targets[0] if play.targets else None)}",
        f"<b>Leverage:</b> {lev_lo}× – {lev_hi}×",
        f"<b>Quality:</b> {_quality(play)}{' (sub-gate)' if sub_gate else ''}",
        f"<b>Risk:</b> {cfg.risk_pct:g}% → pos ≈ {pos:,.1f} USD",
        "",
    ]
    lines += _snapshot_lines(snap)
    swings = _swings_line(snap)
    if swings:
        lines.append(swings)
    if sub_gate:
        lines.append("⚠️ <b>Below quality gate – informational only</b>")
    lines += [
        "",
        "<b>Plan</b>",
        "Enter within zone; abort if unfilled in 90 min or opposite trigger forms.",
        "",
        f"#{_esc(asset)} #Play{play.id}",
    ]
    if cfg.footer:
        lines.append(_esc(cfg.footer))
    return "\n".join(lines)


def play_line(play: Play) -> str:
    entry = _fmt_usd(play.entry_zone[0])
    if len(play.entry_zone) > 1:
        entry += f"-{_fmt_usd(play.entry_zone[1])}"
    flag = "⤓" if play.below_gate else ""
    q = play.quality.value if play.quality else "?"
    return f"• #{play.id} ({q}/10{flag}) {play.name} {play.direction} @{entry} SL:{_fmt_usd(play.stop)}"


# --- check report -------------------------------------------------------------

def regime_line(regime: Regime) -> str:
    band = f"{regime.band_width_pct:.2f}%" if regime.band_width_pct is not None else "n/a"
    return (
        f"Regime: HTF={regime.htf_trend}, ADX4hStrong={regime.adx_strong}, "
        f"LTF Compression={regime.ltf_compression}, LTF Expansion={regime.ltf_expansion}, "
        f"bandW={band}, ATR15={regime.atr15_pct:.2f}%"
    )


def check_line(check: SignalCheck) -> str:
    if check.detected:
        return f"#{check.rule_id} {check.name}: ✓ DETECTED"
    why = "; ".join(check.reasons) or "conditions not met"
    return f"#{check.rule_id} {check.name}: ✗ SKIPPED — {why}"


def summary_line(snap: MarketSnapshot, plays: Sequence[Play]) -> str:
    parts = [f"price={_fmt_usd(snap.price)}"]
    if snap.levels and snap.levels.hh20:
        parts.append(f"HH20Δ={(snap.price - snap.levels.hh20) / snap.levels.hh20 * 100:.2f}%")
    if snap.structure and snap.structure.avwap:
        parts.append(f"AVWAPΔ={(snap.price - snap.structure.avwap) / snap.structure.avwap * 100:.2f}%")
    fz = snap.derivatives.funding_z if snap.derivatives else 0.0
    liq = snap.liquidations
    parts.append(f"fundingZ={fz:.2f}")
    parts.append(f"bigLiq=${max(liq.long1h, liq.short1h) / 1e6:,.0f}M")
    ids = ",".join(f"{p.id}({p.quality.value if p.quality else '?'}{'⤓' if p.below_gate else ''})" for p in plays)
    parts.append(f"plays=[{ids or 'none'}]")
    return "ALERT SUMMARY | " + "  ".join(parts)


def post_gate_lines(checks: Sequence[SignalCheck], plays: Sequence[Play]) -> List[str]:
    by_id: Dict[int, List[Play]] = {}
    for p in plays:
        by_id.setdefault(p.id, []).append(p)
    out: List[str] = []
    for c in checks:
        if not c.detected:
            out.append(f"#{c.rule_id} {c.name}: SKIPPED pre-gate (no signal)")
            continue
        found = by_id.get(c.rule_id, [])
        ready = [p for p in found if not p.below_gate]
        if ready:
            quals = ",".join(str(p.quality.value) for p in ready if p.quality)
            out.append(f"#{c.rule_id} {c.name}: READY (passed gate) — quality={quals}")
            continue
        reasons = []
        for p in found:
            g = p.quality.gate if p.quality else None
            if g is None:
                reasons.append("not scored")
                continue
            adj = f" +{g.adjustment}" if g.adjustment else ""
            denied = " denied by regime" if g.denied else ""
            reasons.append(f"q={p.quality.value} < gate {g.final_gate} (base {g.base_gate}{adj}){denied}")
        out.append(f"#{c.rule_id} {c.name}: GATED — {' | '.join(reasons)}")
    return out


def check_report(
    snap: MarketSnapshot,
    regime: Regime,
    checks: Sequence[SignalCheck],
    plays: Sequence[Play],
) -> List[str]:
    lines = ["=== SIGNAL CHECK REPORT ===", regime_line(regime)]
    lines += [check_line(c) for c in checks]
    lines.append(summary_line(snap, plays))
    lines += [play_line(p) for p in plays]
    lines.append("=== POST-GATE SUMMARY ===")
    lines += post_gate_lines(checks, plays)
    lines.append("=== END CHECK REPORT ===")
    return lines
