#!/usr/bin/env python3
"""
Tests for the anti-bot SessionManager: caching, single-flight refresh, failures.
"""

import sys
import asyncio
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import httpx

from captionkit.core.error_codes import SessionError, SignatureError
from captionkit.core.net import create_http_client
from captionkit.core.session import SessionManager

CHALLENGE_HTML = "<html><script>/* challenge */</script></html>"


class FakeEngine:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def compute(self, html, nonce, user_agent):
        self.calls += 1
        if self.fail:
            raise SignatureError("抖音签名计算失败")
        return f"sig-{nonce}"


class FakePlatform:
    """Home page that hands out a nonce, then session cookies once signed."""

    def __init__(self, give_nonce=True):
        self.give_nonce = give_nonce
        self.nonce_requests = 0
        self.signed_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        cookie = request.headers.get("cookie", "")
        if "__ac_signature=" in cookie:
            self.signed_requests += 1
            return httpx.Response(200, headers=[
                ("set-cookie", "ttwid=abc; Path=/; HttpOnly"),
                ("set-cookie", "msToken=xyz; Path=/"),
            ], text="<html>home</html>")
        self.nonce_requests += 1
        headers = [("set-cookie", "__ac_nonce=n1; Path=/")] if self.give_nonce else []
        return httpx.Response(200, headers=headers, text=CHALLENGE_HTML)


class TestSessionManager(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.now = [1_000_000.0]
        self.platform = FakePlatform()
        self.engine = FakeEngine()
        self.client = create_http_client(transport=httpx.MockTransport(self.platform))
        self.sessions = SessionManager(self.client, self.engine, clock=lambda: self.now[0])

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_cookie_header_assembled(self):
        session = await self.sessions.get_session()
        for part in ("__ac_nonce=n1", "__ac_signature=sig-n1",
                     "__ac_referer=__ac_blank", "ttwid=abc", "msToken=xyz"):
            self.assertIn(part, session.cookie_header)
        self.assertEqual(session.expires_at, self.now[0] + 29 * 60)

    async def test_cached_session_reused(self):
        first = await self.sessions.get_session()
        for _ in range(3):
            self.now[0] += 60
            self.assertIs(await self.sessions.get_session(), first)
        self.assertEqual(self.platform.nonce_requests, 1)
        self.assertEqual(self.platform.signed_requests, 1)
        self.assertEqual(self.engine.calls, 1)

    async def test_concurrent_cold_calls_share_one_handshake(self):
        results = await asyncio.gather(*(self.sessions.get_session() for _ in range(8)))
        self.assertEqual(len({id(s) for s in results}), 1)
        self.assertEqual(self.platform.nonce_requests, 1)
        self.assertEqual(self.platform.signed_requests, 1)
        self.assertEqual(self.engine.calls, 1)

    async def test_refresh_inside_margin(self):
        await self.sessions.get_session()
        self.now[0] += 29 * 60 - 30
        await self.sessions.get_session()
        self.assertEqual(self.platform.nonce_requests, 2)

    async def test_invalidate_forces_handshake(self):
        await self.sessions.get_session()
        self.sessions.invalidate()
        self.assertIsNone(self.sessions.cached)
        await self.sessions.get_session()
        self.assertEqual(self.platform.nonce_requests, 2)


class TestSessionFailures(unittest.IsolatedAsyncioTestCase):

    async def test_missing_nonce(self):
        platform = FakePlatform(give_nonce=False)
        async with create_http_client(transport=httpx.MockTransport(platform)) as client:
            sessions = SessionManager(client, FakeEngine())
            with self.assertRaises(SessionError):
                await sessions.get_session()
            # no retry loop: the next call starts a fresh handshake
            with self.assertRaises(SessionError):
                await sessions.get_session()
            self.assertEqual(platform.nonce_requests, 2)

    async def test_signature_failure_becomes_session_error(self):
        platform = FakePlatform()
        async with create_http_client(transport=httpx.MockTransport(platform)) as client:
            sessions = SessionManager(client, FakeEngine(fail=True))
            with self.assertRaises(SessionError):
                await sessions.get_session()
            self.assertEqual(platform.signed_requests, 0)

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        async with create_http_client(transport=httpx.MockTransport(handler)) as client:
            sessions = SessionManager(client, FakeEngine())
            with self.assertRaises(SessionError):
                await sessions.get_session()


if __name__ == "__main__":
    unittest.main()
