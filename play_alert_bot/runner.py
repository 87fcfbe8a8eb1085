from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .analysis import build_snapshot
from .config import Config
from .dedupe_store import JsonFileStore, KeyValueStore
from .formatters import check_report, format_play
from .gating import LifecycleManager, apply_gates
from .models import MarketSnapshot, Play, SignalCheck
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .providers.binance import BinanceProvider
from .providers.collect import collect_market_data
from .providers.context import ContextProvider
from .providers.http import JsonHttpClient
from .signals import evaluate_signals

log = logging.getLogger("runner")


@dataclass
class TickResult:
    snapshot: Optional[MarketSnapshot] = None
    plays: List[Play] = field(default_factory=list)
    checks: List[SignalCheck] = field(default_factory=list)
    sent: List[Play] = field(default_factory=list)
    muted: bool = False
    duplicates: List[str] = field(default_factory=list)
    dry_run: bool = False


class AlertRunner:
    """One tick: collect, analyse, detect, score and gate, report, notify, commit."""

    def __init__(
        self,
        cfg: Config,
        *,
        binance: Optional[BinanceProvider] = None,
        context: Optional[ContextProvider] = None,
        tg: Optional[TelegramNotifier] = None,
        webhook: Optional[WebhookNotifier] = None,
        store: Optional[KeyValueStore] = None,
        dry_run: bool = False,
    ):
        self.cfg = cfg
        self.dry_run = dry_run
        self.http: Optional[JsonHttpClient] = None
        if binance is None or context is None:
            self.http = JsonHttpClient(
                timeout_s=cfg.provider.rest_timeout_s,
                max_retries=cfg.provider.rest_max_retries,
                backoff_s=cfg.provider.rest_backoff_s,
            )
        self.binance = binance or BinanceProvider(
            self.http,
            spot_base_url=cfg.provider.spot_base_url,
            futures_base_url=cfg.provider.futures_base_url,
        )
        self.context = context or ContextProvider(
            self.http,
            liquidations_url=cfg.provider.liquidations_url,
            global_url=cfg.provider.global_url,
            fear_greed_url=cfg.provider.fear_greed_url,
        )
        self.tg = tg or TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = webhook or WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )
        lc = cfg.lifecycle
        self.lifecycle = LifecycleManager(
            store if store is not None else JsonFileStore(lc.cache_path),
            mute_minutes=lc.mute_minutes,
            ttl_minutes=lc.ttl_minutes,
            a_tier=lc.a_tier,
            bucket=lc.dedupe_bucket,
        )

    async def close(self) -> None:
        if self.http is not None:
            await self.http.close()

    async def _deliver(self, play: Play, snap: MarketSnapshot, now_ms: int) -> bool:
        msg = format_play(play, snap, self.cfg.alerts, now_ms, asset=self.cfg.app.asset)
        delivered = False
        if self.tg.enabled():
            delivered = await self.tg.send(msg, parse_mode=self.cfg.alerts.parse_mode)
        if self.webhook.enabled:
            hooked = await self.webhook.send_play(play, snap)
            delivered = delivered or (hooked and not self.tg.enabled())
        return delivered

    async def run_once(self, now_ms: Optional[int] = None) -> TickResult:
        now_ms = int(now_ms if now_ms is not None else time.time() * 1000)
        result = TickResult(dry_run=self.dry_run)

        data = await collect_market_data(self.binance, self.context, self.cfg, now_ms)
        snap = build_snapshot(data, self.cfg)
        result.snapshot = snap

        plays, checks = evaluate_signals(snap, self.cfg.rules)
        apply_gates(plays, snap, snap.regime, self.cfg.scoring)
        result.plays, result.checks = plays, checks

        for line in check_report(snap, snap.regime, checks, plays):
            log.info(line)

        if not plays:
            log.info("tick_done plays=0 sent=0")
            return result

        decision = self.lifecycle.select(plays, snap, now_ms)
        result.muted = decision.muted
        result.duplicates = decision.duplicates
        if not decision.sendable:
            log.info("tick_done plays=%d sendable=0 sent=0", len(plays))
            return result
        if decision.muted or not decision.fresh:
            log.info(
                "tick_done plays=%d sendable=%d muted=%s duplicates=%d sent=0",
                len(plays), len(decision.sendable), decision.muted, len(decision.duplicates),
            )
            return result

        if self.dry_run:
            for p in decision.fresh:
                log.info("dry_run_would_send play=%d dir=%s quality=%s", p.id, p.direction, p.quality.value)
            return result

        for p in decision.fresh:
            if await self._deliver(p, snap, now_ms):
                result.sent.append(p)
            else:
                log.warning("deliver_failed play=%d dir=%s", p.id, p.direction)

        self.lifecycle.commit(result.sent, snap, now_ms)
        log.info("healthcheck sent=%d of fresh=%d", len(result.sent), len(decision.fresh))
        return result

    async def notify_error(self, err: BaseException) -> None:
        if self.dry_run or not self.tg.enabled():
            return
        text = html.escape(f"{self.cfg.app.name}: Bot error: {err}", quote=False)
        await self.tg.send(text, parse_mode=self.cfg.alerts.parse_mode)
