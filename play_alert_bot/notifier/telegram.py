from __future__ import annotations

import asyncio
import aiohttp
from typing import List, Optional
import logging

log = logging.getLogger("telegram")

API_URL = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LEN = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LEN) -> List[str]:
    """Cut `text` into chunks under Telegram's length cap, on line breaks where possible."""
    if len(text) <= limit:
        return [text]
    parts: List[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            parts.append(current)
            current = line
        else:
            current = candidate
    if current:
        parts.append(current)
    return parts


class TelegramNotifier:
    def __init__(self, token: str, chat_ids: List[str], *, disable_web_page_preview: bool = True):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.disable_web_page_preview = disable_web_page_preview

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    async def _post(self, sess: aiohttp.ClientSession, chat_id: str, chunk: str, parse_mode: Optional[str]) -> bool:
        payload = {
            "chat_id": chat_id,
            "text": chunk,
            "disable_web_page_preview": self.disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        try:
            async with sess.post(API_URL.format(token=self.token), json=payload) as resp:
                if resp.status == 200:
                    return True
                body = await resp.text()
                log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:500])
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            log.warning("telegram_send_exception chat_id=%s err=%s", chat_id, e)
        return False

    async def send(
        self,
        text: str,
        *,
        chat_ids: Optional[List[str]] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> bool:
        """Deliver `text` to every chat. True only if every chunk reached every chat."""
        if not self.enabled():
            return False
        chunks = split_message(text)
        ok = True
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in chat_ids or self.chat_ids:
                for chunk in chunks:
                    if not await self._post(sess, chat_id, chunk, parse_mode):
                        ok = False
                        break
        return ok
