from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Optional

import aiohttp

from ..errors import DataUnavailable

log = logging.getLogger("http")


class JsonHttpClient:
    """Shared aiohttp session with bounded retry, exponential backoff and jitter.

    Every failure mode ends in DataUnavailable so callers handle one error type.
    """

    def __init__(
        self,
        *,
        timeout_s: int = 45,
        max_retries: int = 3,
        backoff_s: float = 0.5,
        conn_limit: int = 20,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.timeout_s = timeout_s
        self.max_retries = max(1, int(max_retries))
        self.backoff_s = backoff_s
        self.conn_limit = conn_limit
        self.headers = headers or {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.timeout_s,
            connect=min(10, self.timeout_s),
            sock_connect=min(10, self.timeout_s),
            sock_read=max(10, int(self.timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.conn_limit, ttl_dns_cache=300, enable_cleanup_closed=True)
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=connector, headers=self.headers)
        return self._session

    def _sleep_for(self, attempt: int) -> float:
        return min(30.0, self.backoff_s * (2 ** (attempt - 1)) + random.uniform(0.0, 0.3))

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        sess = await self._get_session()
        last_err: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in (418, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else self._sleep_for(attempt)
                        log.warning(
                            "rest_rate_limited status=%s url=%s sleep=%.1fs body=%s",
                            resp.status, url, sleep_s, txt[:200],
                        )
                        last_err = f"HTTP {resp.status}"
                        if attempt < self.max_retries:
                            await asyncio.sleep(sleep_s)
                        continue
                    if resp.status >= 500:
                        last_err = f"HTTP {resp.status}"
                    elif resp.status != 200:
                        txt = await resp.text()
                        raise DataUnavailable(f"GET {url} failed: {resp.status} {txt[:300]}")
                    else:
                        # Some proxies return a wrong content-type; be tolerant.
                        return await resp.json(content_type=None)
            except (asyncio.TimeoutError, aiohttp.ClientError, ValueError) as e:
                last_err = repr(e)

            if attempt < self.max_retries:
                sleep_s = self._sleep_for(attempt)
                log.warning(
                    "rest_retry attempt=%d/%d url=%s backoff=%.1fs err=%s",
                    attempt, self.max_retries, url, sleep_s, last_err,
                )
                await asyncio.sleep(sleep_s)

        raise DataUnavailable(f"GET {url} failed after {self.max_retries} attempts: {last_err}")
