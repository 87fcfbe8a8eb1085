from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..models import MarketSnapshot, Play

log = logging.getLogger("webhook")


def play_payload(play: Play, snap: MarketSnapshot, secret: str = "") -> Dict[str, Any]:
    q = play.quality
    payload: Dict[str, Any] = {
        "symbol": snap.symbol,
        "play_id": play.id,
        "name": play.name,
        "direction": play.direction,
        "style": play.style,
        "entry_zone": list(play.entry_zone),
        "stop": play.stop,
        "targets": list(play.targets),
        "leverage_range": list(play.leverage_range),
        "quality": q.value if q else None,
        "below_gate": play.below_gate,
        "price": snap.price,
        "timestamp_ms": int(snap.timestamp_ms),
    }
    if q is not None and q.gate is not None:
        payload["gate"] = q.gate.final_gate
    if secret:
        payload["secret"] = secret
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: Optional[dict] = None):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_play(self, play: Play, snap: MarketSnapshot) -> bool:
        if not self.enabled or not self.url:
            return False
        body = json.dumps(play_payload(play, snap, self.secret))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
            return False
        return True
