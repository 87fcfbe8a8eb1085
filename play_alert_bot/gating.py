from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .config import ScoringConfig
from .dedupe_store import KeyValueStore
from .indicators import round_half_up
from .models import GateInfo, MarketSnapshot, Play, Regime
from .scoring import score_play

log = logging.getLogger("gating")

CACHE_KEY = "alert_cache"


def _opposes_htf(direction: str, regime: Regime) -> bool:
    return (regime.htf_trend == "UP" and direction == "SHORT") or (
        regime.htf_trend == "DOWN" and direction == "LONG"
    )


def regime_adjust_gate(play: Play, snapshot: MarketSnapshot, regime: Regime) -> Tuple[int, bool]:
    """Gate delta and denial flag for a play under the current regime."""
    adj = 0
    deny = False
    opposing = _opposes_htf(play.direction, regime)

    if play.style == "trend":
        if regime.htf_trend == "RANGE":
            adj += 1
        if regime.adx_strong and opposing:
            adj += 2
    elif play.style == "reversion":
        if regime.adx_strong and regime.htf_trend != "RANGE" and not snapshot.neck_break:
            adj += 2
        if regime.ltf_expansion and not regime.ltf_compression:
            adj += 1
    elif play.style == "breakout":
        if not regime.ltf_compression:
            deny = True
    elif play.style == "contrarian":
        if regime.adx_strong:
            adj += 2 if opposing else 1
    return adj, deny


def apply_gates(
    plays: Sequence[Play],
    snapshot: MarketSnapshot,
    regime: Regime,
    cfg: Optional[ScoringConfig] = None,
) -> List[Play]:
    """Score (if needed) and gate every play. Nothing is dropped; sub-gate plays are flagged."""
    cfg = cfg or ScoringConfig()
    out: List[Play] = []
    for p in plays:
        quality = p.quality or score_play(p, snapshot, cfg)
        adj, deny = regime_adjust_gate(p, snapshot, regime)
        base = cfg.gate_for(p.id)
        final = max(1, base + adj)
        gate = GateInfo(base_gate=base, adjustment=adj, final_gate=final, denied=deny)
        p.quality = replace(quality, below_gate=deny or quality.value < final, gate=gate)
        out.append(p)
    return out


def play_key(play: Play, snapshot: MarketSnapshot, bucket: float = 50.0) -> str:
    """`id:direction:level`; the rule's reference level, else the price bucket."""
    if play.reference_level is not None:
        level = round_half_up(play.reference_level)
    else:
        level = round_half_up(snapshot.price / bucket) * bucket
        level = int(level) if float(level).is_integer() else level
    return f"{play.id}:{play.direction}:{level}"


@dataclass
class LifecycleDecision:
    sendable: List[Play] = field(default_factory=list)
    fresh: List[Play] = field(default_factory=list)
    muted: bool = False
    a_tier: bool = False
    duplicates: List[str] = field(default_factory=list)


class LifecycleManager:
    """Global mute window plus per-key TTL over an injected key-value store.

    The store is read in `select` and written only by `commit`, which the
    caller invokes after a successful send.
    """

    def __init__(
        self,
        store: KeyValueStore,
        mute_minutes: int = 60,
        ttl_minutes: int = 30,
        a_tier: int = 8,
        bucket: float = 50.0,
    ) -> None:
        self.store = store
        self.mute_ms = int(mute_minutes) * 60_000
        self.ttl_ms = int(ttl_minutes) * 60_000
        self.a_tier = int(a_tier)
        self.bucket = float(bucket)

    def _cache(self) -> Dict:
        cache = self.store.get(CACHE_KEY) or {}
        return {"ts": int(cache.get("ts") or 0), "plays": dict(cache.get("plays") or {})}

    def select(self, plays: Sequence[Play], snapshot: MarketSnapshot, now_ms: int) -> LifecycleDecision:
        decision = LifecycleDecision()
        decision.sendable = [p for p in plays if not p.below_gate]
        if not decision.sendable:
            return decision

        cache = self._cache()
        decision.a_tier = any(p.quality is not None and p.quality.value >= self.a_tier for p in decision.sendable)
        if now_ms - cache["ts"] < self.mute_ms and not decision.a_tier:
            decision.muted = True
            log.info("muted window_min=%d last_ts=%d", self.mute_ms // 60_000, cache["ts"])
            return decision

        for p in decision.sendable:
            key = play_key(p, snapshot, self.bucket)
            last = int(cache["plays"].get(key) or 0)
            if now_ms - last < self.ttl_ms:
                log.info("skip_duplicate key=%s age_s=%d", key, (now_ms - last) // 1000)
                decision.duplicates.append(key)
                continue
            decision.fresh.append(p)
        return decision

    def commit(self, sent: Sequence[Play], snapshot: MarketSnapshot, now_ms: int) -> None:
        if not sent:
            return
        cache = self._cache()
        cache["ts"] = int(now_ms)
        for p in sent:
            cache["plays"][play_key(p, snapshot, self.bucket)] = int(now_ms)
        self.store.set(CACHE_KEY, cache)
