"""
SessionManager: acquires and caches the platform's anti-bot cookie set.

Handshake:
  1. GET the home page without cookies -> __ac_nonce cookie + challenge HTML
  2. SignatureEngine(html, nonce, UA) -> __ac_signature
  3. GET the home page again with nonce/signature cookies -> remaining cookies
  4. cookie header = nonce + signature + referer + step-3 cookies, TTL 29 min

Refresh is single-flight: concurrent callers on a cold cache all await the
same in-flight handshake. There is no retry loop; a failed handshake raises
SessionError and the next get_session() call starts a fresh one.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from captionkit.core.constants import (
    PLATFORM_HOME_URL, DESKTOP_UA, ACCEPT_LANGUAGE,
    NONCE_COOKIE, SIGNATURE_COOKIE, REFERER_COOKIE,
    SESSION_TTL_SEC, SESSION_REFRESH_MARGIN_SEC,
)
from captionkit.core.error_codes import SessionError, SignatureError
from captionkit.core.models import AntiBotSession
from captionkit.core.net import set_cookies, pick_cookie_value, parse_set_cookie_pairs
from captionkit.core.signature import SignatureEngine

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the process-wide session cache; construct one per service (or per test)."""

    def __init__(self, client: httpx.AsyncClient,
                 engine: SignatureEngine | None = None,
                 clock: Callable[[], float] = time.time,
                 ttl_sec: float = SESSION_TTL_SEC,
                 margin_sec: float = SESSION_REFRESH_MARGIN_SEC):
        self.client = client
        self.engine = engine or SignatureEngine()
        self._clock = clock
        self.ttl_sec = ttl_sec
        self.margin_sec = margin_sec
        self._session: Optional[AntiBotSession] = None
        self._refresh: Optional[asyncio.Future] = None

    @property
    def cached(self) -> Optional[AntiBotSession]:
        """The cached session if still inside its validity window."""
        session = self._session
        if session is not None and session.is_valid(self._clock(), self.margin_sec):
            return session
        return None

    def invalidate(self):
        """Drop the cached session; the next get_session() performs a handshake."""
        if self._session is not None:
            logger.info("Anti-bot session invalidated")
        self._session = None

    async def get_session(self) -> AntiBotSession:
        session = self.cached
        if session is not None:
            return session

        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._refresh_session())
            self._refresh.add_done_callback(self._refresh_finished)
        # shield: one waiter being cancelled must not abort the shared handshake
        return await asyncio.shield(self._refresh)

    def _refresh_finished(self, fut: asyncio.Future):
        if self._refresh is fut:
            self._refresh = None
        if not fut.cancelled() and fut.exception() is not None:
            logger.warning("Anti-bot session refresh failed: %s", fut.exception())

    async def _refresh_session(self) -> AntiBotSession:
        headers = {"User-Agent": DESKTOP_UA, "Accept-Language": ACCEPT_LANGUAGE}

        try:
            first = await self.client.get(PLATFORM_HOME_URL, headers=headers)
        except httpx.HTTPError as e:
            raise SessionError(f"获取 {NONCE_COOKIE} 失败：{type(e).__name__}")
        nonce = pick_cookie_value(set_cookies(first), NONCE_COOKIE)
        if not nonce:
            raise SessionError(f"获取 {NONCE_COOKIE} 失败")

        try:
            signature = await asyncio.to_thread(self.engine.compute, first.text, nonce, DESKTOP_UA)
        except SignatureError as e:
            raise SessionError(f"签名计算失败：{e.message}")

        base_cookie = f"{NONCE_COOKIE}={nonce}; {SIGNATURE_COOKIE}={signature}; {REFERER_COOKIE}"
        try:
            second = await self.client.get(PLATFORM_HOME_URL, headers={**headers, "Cookie": base_cookie})
        except httpx.HTTPError as e:
            raise SessionError(f"会话握手失败：{type(e).__name__}")

        parts = [base_cookie]
        parts.extend(f"{k}={v}" for k, v in parse_set_cookie_pairs(set_cookies(second)).items())

        session = AntiBotSession(
            cookie_header="; ".join(parts),
            expires_at=self._clock() + self.ttl_sec,
        )
        self._session = session
        logger.info("Anti-bot session refreshed, valid for %ds", int(self.ttl_sec))
        return session
