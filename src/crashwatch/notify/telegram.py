from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp
import structlog

from crashwatch.config import TelegramConfig
from crashwatch.utils.backoff import backoff_iter, jitter

log = structlog.get_logger("telegram")

API_BASE = "https://api.telegram.org"


class TelegramChannel:
    """
    Push channel over the Bot API sendMessage call.

    send() never raises: 429 / 5xx / network errors are retried with
    jittered exponential backoff, anything else is a failed send (False).
    """
    def __init__(self, cfg: Optional[TelegramConfig], session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None

    @property
    def enabled(self) -> bool:
        return self.cfg is not None

    async def _get_session(self) -> aiohttp.ClientSession:
        assert self.cfg is not None
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def send(self, text: str, disable_notification: bool = False) -> bool:
        if self.cfg is None:
            log.debug("telegram_not_configured")
            return False
        url = f"{API_BASE}/bot{self.cfg.bot_token}/sendMessage"
        payload = {
            "chat_id": self.cfg.chat_id,
            "text": text,
            "disable_notification": "true" if disable_notification else "false",
        }
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        session = await self._get_session()
        delays = backoff_iter(self.cfg.initial_backoff_s, self.cfg.max_backoff_s)
        for attempt in range(1, self.cfg.max_retries + 1):
            wait = jitter(next(delays))
            try:
                async with session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return True
                    detail = await _maybe_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=detail, attempt=attempt)
                    if resp.status == 429:
                        # Telegram may tell us exactly how long to back off
                        ra = await _retry_after(resp)
                        if ra is not None:
                            wait = ra
                    elif not 500 <= resp.status < 600:
                        # other 4xx: bad token / chat id / markup, retrying won't help
                        return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
            if attempt < self.cfg.max_retries:
                await asyncio.sleep(wait)
        log.error("telegram_give_up_after_retries", attempts=self.cfg.max_retries)
        return False


async def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
    try:
        data = await resp.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return None
    ra = ((data or {}).get("parameters") or {}).get("retry_after")
    return float(ra) if ra else None


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"
