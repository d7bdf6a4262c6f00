#!/usr/bin/env python3
"""
Tests for MetadataFetcher and LinkResolver against a faked platform.
"""

import sys
import time
import asyncio
import threading
import json
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import httpx

from captionkit.core.constants import LinkKind
from captionkit.core.error_codes import LinkError, MetadataError, ResolutionError, SignatureError
from captionkit.core.metadata import MetadataFetcher
from captionkit.core.net import create_http_client
from captionkit.core.resolver import LinkResolver
from captionkit.core.session import SessionManager

VIDEO_ID = "7300000000000000001"
ACCOUNT_ID = "MS4wLjABAAAA"


def video_item(**overrides) -> dict:
    item = {
        "aweme_id": VIDEO_ID,
        "desc": "测试视频",
        "create_time": 1700000000,
        "video": {
            "duration": 15000,
            "cover": {"url_list": ["https://p3.douyinpic.com/c.jpg"]},
            "play_addr": {"url_list": ["https://v26.douyinvod.com/v.mp4"]},
        },
        "author": {
            "nickname": "作者",
            "sec_uid": ACCOUNT_ID,
            "unique_id": "u1",
            "avatar_thumb": {"url_list": ["https://p3.douyinpic.com/a.jpg"]},
        },
        "statistics": {"digg_count": 10, "comment_count": 2, "share_count": 1, "collect_count": 3},
    }
    item.update(overrides)
    return item


def share_page(item: dict) -> str:
    data = {"loaderData": {"video_(id)/page": {"videoInfoRes": {"item_list": [item]}}}}
    return ("<html><body><script>window._ROUTER_DATA = "
            f"{json.dumps(data, ensure_ascii=False)};</script></body></html>")


class FakeEngine:
    def compute(self, html, nonce, user_agent):
        return "sig"


class FakeSigner:
    def __init__(self, fail=False):
        self.fail = fail
        self.queries = []

    def sign(self, query, user_agent):
        if self.fail:
            raise SignatureError("列表签名计算失败")
        self.queries.append(query)
        return "AB/+="


class SlowSigner:
    """Blocks like a real V8 evaluation would."""

    def __init__(self, delay):
        self.delay = delay
        self.thread_id = None

    def sign(self, query, user_agent):
        self.thread_id = threading.get_ident()
        time.sleep(self.delay)
        return "slow"


class FakePlatform:
    """Routes requests by host and path; listing responses are served in order."""

    def __init__(self, item=None, listing=None, srt_text=None):
        self.item = item or video_item()
        self.listing = list(listing or [])
        self.srt_text = srt_text
        self.handshakes = 0
        self.listing_requests = []
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if host == "www.douyin.com" and path == "/":
            if "__ac_signature=" in request.headers.get("cookie", ""):
                return httpx.Response(200, headers={"set-cookie": "ttwid=t1"})
            self.handshakes += 1
            return httpx.Response(200, headers={"set-cookie": f"__ac_nonce=n{self.handshakes}"},
                                  text="<script>x</script>")

        if host == "www.douyin.com" and path == "/aweme/v1/web/aweme/post/":
            self.listing_requests.append(request)
            if not self.listing:
                return httpx.Response(500)
            return self.listing.pop(0)

        if host == "www.iesdouyin.com" and path.startswith("/share/video/"):
            return httpx.Response(200, text=share_page(self.item))

        if host == "www.iesdouyin.com" and path == "/web/api/v2/user/info/":
            return httpx.Response(200, json={"user_info": {
                "sec_uid": request.url.params.get("sec_uid"),
                "nickname": "博主",
                "signature": "简介",
                "unique_id": "blogger",
                "mplatform_followers_count": 123456,
                "following_count": 12,
                "total_favorited": 234567890,
                "aweme_count": 88,
            }})

        if host == "sf3.douyinvod.com" and self.srt_text is not None:
            return httpx.Response(200, text=self.srt_text)

        if host == "v.douyin.com":
            return httpx.Response(302, headers={
                "location": f"https://www.iesdouyin.com/share/video/{VIDEO_ID}/?region=CN"})

        return httpx.Response(404)


def listing_item(aweme_id: str, likes: int) -> dict:
    return {"aweme_id": aweme_id, "desc": f"v{aweme_id}", "statistics": {"digg_count": likes},
            "video": {"play_addr": {"url_list": [f"https://v26.douyinvod.com/{aweme_id}.mp4"]}}}


class MetadataTestCase(unittest.IsolatedAsyncioTestCase):

    def make(self, platform: FakePlatform, signer=None):
        self.platform = platform
        self.client = create_http_client(transport=httpx.MockTransport(platform))
        self.sessions = SessionManager(self.client, FakeEngine())
        self.signer = signer or FakeSigner()
        self.fetcher = MetadataFetcher(self.client, self.sessions, self.signer)
        return self.fetcher

    async def asyncTearDown(self):
        await self.client.aclose()


class TestFetchVideo(MetadataTestCase):

    async def test_fields(self):
        meta = await self.make(FakePlatform()).fetch_video(VIDEO_ID)
        self.assertEqual(meta.id, VIDEO_ID)
        self.assertEqual(meta.description, "测试视频")
        self.assertEqual(meta.duration_ms, 15000)
        self.assertEqual(meta.author.name, "作者")
        self.assertEqual(meta.author.account_id, ACCOUNT_ID)
        self.assertEqual(meta.stats.likes, 10)
        self.assertEqual(meta.media_url, "https://v26.douyinvod.com/v.mp4")
        self.assertIsNone(meta.caption)
        self.assertFalse(meta.has_caption)

        request = self.platform.requests[0]
        self.assertIn("iPhone", request.headers["user-agent"])

    async def test_caption_field_wins(self):
        item = video_item(caption="内嵌字幕", caption_infos=[{"text": "别的"}])
        meta = await self.make(FakePlatform(item=item)).fetch_video(VIDEO_ID)
        self.assertEqual(meta.caption, "内嵌字幕")

    async def test_subtitle_field(self):
        item = video_item()
        item["video"]["video_subtitle"] = "视频字幕"
        meta = await self.make(FakePlatform(item=item)).fetch_video(VIDEO_ID)
        self.assertEqual(meta.caption, "视频字幕")

    async def test_srt_file(self):
        item = video_item(srt_lyric={"url": "https://sf3.douyinvod.com/sub.srt"})
        srt = "1\n00:00:00,000 --> 00:00:01,000\n第一句\n\n2\n00:00:01,000 --> 00:00:02,000\n第二句\n"
        meta = await self.make(FakePlatform(item=item, srt_text=srt)).fetch_video(VIDEO_ID)
        self.assertEqual(meta.caption, "第一句 第二句")

    async def test_srt_on_internal_host_is_skipped(self):
        item = video_item(srt_lyric={"url": "http://127.0.0.1/sub.srt"})
        meta = await self.make(FakePlatform(item=item)).fetch_video(VIDEO_ID)
        self.assertIsNone(meta.caption)
        self.assertFalse(any(r.url.host == "127.0.0.1" for r in self.platform.requests))

    async def test_caption_infos_joined(self):
        item = video_item(caption_infos=[{"text": "甲"}, {"caption": "乙"}])
        meta = await self.make(FakePlatform(item=item)).fetch_video(VIDEO_ID)
        self.assertEqual(meta.caption, "甲 乙")

    async def test_lowbr_media_fallback(self):
        item = video_item()
        item["video"] = {"play_addr_lowbr": {"url_list": ["https://v3.douyinvod.com/low.mp4"]}}
        meta = await self.make(FakePlatform(item=item)).fetch_video(VIDEO_ID)
        self.assertEqual(meta.media_url, "https://v3.douyinvod.com/low.mp4")

    async def test_missing_router_data(self):
        def handler(request):
            return httpx.Response(200, text="<html>blocked</html>")

        self.client = create_http_client(transport=httpx.MockTransport(handler))
        fetcher = MetadataFetcher(self.client, SessionManager(self.client, FakeEngine()), FakeSigner())
        with self.assertRaises(MetadataError):
            await fetcher.fetch_video(VIDEO_ID)


class TestFetchAccount(MetadataTestCase):

    async def test_counts_formatted(self):
        account = await self.make(FakePlatform()).fetch_account(ACCOUNT_ID)
        self.assertEqual(account.account_id, ACCOUNT_ID)
        self.assertEqual(account.nickname, "博主")
        self.assertEqual(account.stats.followers, "12.35w")
        self.assertEqual(account.stats.likes, "2.35亿")
        self.assertEqual(account.stats.following, "12")
        self.assertEqual(account.stats.post_count, "88")
        self.assertEqual(account.raw_followers, 123456)
        self.assertEqual(account.to_dict()["stats"]["postCount"], "88")


class TestFetchAccountVideos(MetadataTestCase):

    async def test_sorted_and_truncated(self):
        ok = httpx.Response(200, json={"status_code": 0, "aweme_list": [
            listing_item("1", 5), listing_item("2", 50), listing_item("3", 20),
            {"desc": "no id"},
        ]})
        fetcher = self.make(FakePlatform(listing=[ok]))
        videos = await fetcher.fetch_account_videos(ACCOUNT_ID, 2)
        self.assertEqual([v.id for v in videos], ["2", "3"])

        request = self.platform.listing_requests[0]
        self.assertIn("a_bogus=AB%2F%2B%3D", str(request.url))
        self.assertIn("count=2", str(request.url))
        self.assertIn("__ac_signature=sig", request.headers["cookie"])
        self.assertEqual(request.headers["referer"], f"https://www.douyin.com/user/{ACCOUNT_ID}")

    async def test_retry_once_after_invalidating_session(self):
        bad = httpx.Response(200, json={"status_code": 8, "aweme_list": None})
        ok = httpx.Response(200, json={"status_code": 0, "aweme_list": [listing_item("9", 1)]})
        fetcher = self.make(FakePlatform(listing=[bad, ok]))
        videos = await fetcher.fetch_account_videos(ACCOUNT_ID)
        self.assertEqual([v.id for v in videos], ["9"])
        self.assertEqual(len(self.platform.listing_requests), 2)
        self.assertEqual(self.platform.handshakes, 2)

    async def test_gives_up_after_one_retry(self):
        empty = httpx.Response(200, json={"status_code": 0, "aweme_list": []})
        garbage = httpx.Response(200, text="<html>not json</html>")
        fetcher = self.make(FakePlatform(listing=[empty, garbage, empty]))
        self.assertEqual(await fetcher.fetch_account_videos(ACCOUNT_ID), [])
        self.assertEqual(len(self.platform.listing_requests), 2)

    async def test_signer_failure_returns_empty(self):
        fetcher = self.make(FakePlatform(), signer=FakeSigner(fail=True))
        self.assertEqual(await fetcher.fetch_account_videos(ACCOUNT_ID), [])
        self.assertEqual(self.platform.listing_requests, [])

    async def test_count_clamped(self):
        fetcher = self.make(FakePlatform())
        await fetcher.fetch_account_videos(ACCOUNT_ID, 999)
        self.assertIn("count=50", self.signer.queries[0])

    async def test_signing_runs_off_the_event_loop(self):
        signer = SlowSigner(0.3)
        fetcher = self.make(FakePlatform(), signer=signer)
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.02)

        task = asyncio.create_task(ticker())
        try:
            await fetcher.fetch_account_videos(ACCOUNT_ID)
        finally:
            task.cancel()
        self.assertNotEqual(signer.thread_id, threading.get_ident())
        gaps = [b - a for a, b in zip(ticks, ticks[1:])]
        self.assertGreater(len(ticks), 5)
        self.assertLess(max(gaps), 0.2)


class TestLinkResolver(MetadataTestCase):

    async def test_short_link_resolved(self):
        self.make(FakePlatform())
        link = await LinkResolver(self.client).resolve("看看 https://v.douyin.com/abc/ 好笑")
        self.assertEqual(link.extracted_url, "https://v.douyin.com/abc/")
        self.assertEqual(link.kind, LinkKind.VIDEO)
        self.assertEqual(link.video_id, VIDEO_ID)
        self.assertIsNone(link.account_id)

    async def test_redirect_to_internal_host_falls_back(self):
        def handler(request):
            return httpx.Response(302, headers={"location": "http://127.0.0.1/video/1"})

        self.client = create_http_client(transport=httpx.MockTransport(handler))
        link = await LinkResolver(self.client).resolve("https://v.douyin.com/abc/")
        self.assertEqual(link.resolved_url, "https://v.douyin.com/abc/")
        self.assertEqual(link.kind, LinkKind.UNKNOWN)

    async def test_hop_limit(self):
        hops = []

        def handler(request):
            hops.append(str(request.url))
            return httpx.Response(302, headers={"location": f"/loop/{len(hops)}"})

        self.client = create_http_client(transport=httpx.MockTransport(handler))
        final = await LinkResolver(self.client).resolve_redirects("https://www.douyin.com/start", 3)
        self.assertEqual(len(hops), 3)
        self.assertEqual(final, "https://www.douyin.com/loop/3")

    async def test_hop_limit_on_internal_host(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.path == "/start":
                return httpx.Response(302, headers={"location": "/next"})
            return httpx.Response(302, headers={"location": "http://127.0.0.1/video/1"})

        self.client = create_http_client(transport=httpx.MockTransport(handler))
        resolver = LinkResolver(self.client)
        with self.assertRaises(ResolutionError):
            await resolver.resolve_redirects("https://www.douyin.com/start", 2)
        self.assertNotIn("127.0.0.1", hosts)

        link = await resolver.resolve("https://www.douyin.com/start")
        self.assertEqual(link.resolved_url, "https://www.douyin.com/start")

    async def test_foreign_domain_rejected(self):
        self.make(FakePlatform())
        with self.assertRaises(LinkError):
            await LinkResolver(self.client).resolve("https://example.com/video/1")

    async def test_no_link(self):
        self.make(FakePlatform())
        with self.assertRaises(LinkError):
            await LinkResolver(self.client).resolve("纯文字没有链接")


if __name__ == "__main__":
    unittest.main()
