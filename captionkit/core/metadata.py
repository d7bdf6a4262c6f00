"""
MetadataFetcher: public video/account metadata from the platform.

- fetch_video: mobile share page -> window._ROUTER_DATA JSON -> VideoMetadata
- fetch_account: public user-info API -> AccountMetadata with abbreviated counters
- fetch_account_videos: signed listing endpoint behind the anti-bot session;
  one retry after invalidating the session, then an empty list
"""

import asyncio
import json
import logging
import re
from urllib.parse import urlencode, quote

import httpx

from captionkit.core.constants import (
    DESKTOP_UA, MOBILE_UA, ACCEPT_LANGUAGE, VIDEO_PAGE_URL, ACCOUNT_API_URL,
    ACCOUNT_LIST_URL, ACCOUNT_PAGE_URL, LIST_DEFAULT_COUNT, LIST_MAX_COUNT,
)
from captionkit.core.error_codes import CaptionError, LinkError, MetadataError
from captionkit.core.models import (
    VideoMetadata, Author, VideoStats, AccountMetadata, AccountStats,
)
from captionkit.core.net import json_or_none
from captionkit.core.security_utils import assert_safe_url
from captionkit.core.session import SessionManager
from captionkit.core.signature import QuerySigner

logger = logging.getLogger(__name__)

_ROUTER_DATA_RE = re.compile(r'window\._ROUTER_DATA\s*=\s*(\{[\s\S]*?\})\s*;?\s*</script>')
_SRT_INDEX_RE = re.compile(r'^\d+$')


# ── Small helpers ─────────────────────────────────────────────────────

def _first_url(*blocks) -> str | None:
    """First url_list[0] among image/video address blocks."""
    for block in blocks:
        if isinstance(block, dict):
            urls = block.get('url_list') or []
            if urls:
                return urls[0]
    return None


def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def format_count(value) -> str:
    """Abbreviate a raw counter: 12345 -> '1.23w', 123456789 -> '1.23亿'."""
    if value is None:
        return "-"
    try:
        n = float(value)
    except (TypeError, ValueError):
        return "-"
    if n != n or n in (float('inf'), float('-inf')):
        return "-"
    if n >= 100_000_000:
        return f"{n / 100_000_000:.2f}亿"
    if n >= 10_000:
        return f"{n / 10_000:.2f}w"
    return str(round(n))


def srt_to_text(srt: str) -> str:
    """Strip cue numbers and timing lines from an SRT file, joining the text."""
    lines = []
    for line in srt.splitlines():
        stripped = line.strip()
        if not stripped or _SRT_INDEX_RE.match(stripped) or '-->' in stripped:
            continue
        lines.append(stripped)
    return ' '.join(lines).strip()


def clamp_count(count) -> int:
    try:
        count = int(count)
    except (TypeError, ValueError):
        count = LIST_DEFAULT_COUNT
    if count <= 0:
        count = LIST_DEFAULT_COUNT
    return min(count, LIST_MAX_COUNT)


def _parse_stats(stats: dict) -> VideoStats:
    return VideoStats(
        likes=_as_int(stats.get('digg_count', stats.get('diggCount'))),
        comments=_as_int(stats.get('comment_count', stats.get('commentCount'))),
        shares=_as_int(stats.get('share_count', stats.get('shareCount'))),
        collects=_as_int(stats.get('collect_count', stats.get('collectCount'))),
    )


def _parse_author(author: dict) -> Author:
    return Author(
        name=author.get('nickname') or "",
        account_id=author.get('sec_uid') or None,
        unique_id=author.get('unique_id') or None,
        avatar_url=_first_url(author.get('avatar_thumb'), author.get('avatar_medium'),
                              author.get('avatar_larger')),
    )


def _media_url(video: dict) -> str | None:
    return _first_url(video.get('play_addr'), video.get('play_addr_lowbr'))


def parse_router_data(html: str) -> dict:
    """Pull the aweme item out of the share page's embedded router state."""
    m = _ROUTER_DATA_RE.search(html or "")
    if not m:
        raise MetadataError("无法解析视频信息（缺少 ROUTER_DATA）")
    try:
        data = json.loads(m.group(1))
    except json.JSONDecodeError:
        raise MetadataError("无法解析视频信息（ROUTER_DATA 不是有效 JSON）")

    loader = data.get('loaderData') or {}
    page_key = next((k for k in loader if 'video_' in k and '/page' in k), None)
    page = loader.get(page_key) if page_key else None
    items = ((page or {}).get('videoInfoRes') or {}).get('item_list') or []
    if not items or not isinstance(items[0], dict):
        raise MetadataError("视频信息为空")
    return items[0]


class MetadataFetcher:
    """Scrapes video/account metadata; listing calls go through the SessionManager."""

    def __init__(self, client: httpx.AsyncClient, sessions: SessionManager,
                 signer: QuerySigner):
        self.client = client
        self.sessions = sessions
        self.signer = signer

    # ── Video detail ──────────────────────────────────────────────────

    async def fetch_video(self, video_id: str) -> VideoMetadata:
        url = VIDEO_PAGE_URL.format(video_id=quote(str(video_id), safe=''))
        try:
            resp = await self.client.get(url, headers={
                "User-Agent": MOBILE_UA,
                "Accept-Language": ACCEPT_LANGUAGE,
            })
        except httpx.HTTPError as e:
            raise MetadataError(f"视频页面请求失败：{type(e).__name__}")

        item = parse_router_data(resp.text)
        video = item.get('video') or {}

        return VideoMetadata(
            id=str(item.get('aweme_id') or video_id),
            description=item.get('desc') or "",
            created_at=_as_int(item.get('create_time')),
            duration_ms=_as_int(video.get('duration')),
            cover_url=_first_url(video.get('cover'), video.get('origin_cover')),
            author=_parse_author(item.get('author') or {}),
            stats=_parse_stats(item.get('statistics') or {}),
            caption=await self._extract_caption(item),
            media_url=_media_url(video),
        )

    async def _extract_caption(self, item: dict) -> str | None:
        """Caption sources in priority order; the first present source wins."""
        video = item.get('video') or {}

        if item.get('caption'):
            return str(item['caption'])

        if video.get('video_subtitle'):
            return str(video['video_subtitle'])

        srt_url = (item.get('srt_lyric') or {}).get('url')
        if srt_url:
            return await self._fetch_srt(srt_url)

        infos = item.get('caption_infos')
        if isinstance(infos, list) and infos:
            joined = ' '.join(
                str(c.get('text') or c.get('caption') or '')
                for c in infos if isinstance(c, dict)
            ).strip()
            return joined or None

        return None

    async def _fetch_srt(self, url: str) -> str | None:
        try:
            assert_safe_url(url)
            resp = await self.client.get(url)
        except (LinkError, httpx.HTTPError) as e:
            logger.info("Subtitle file fetch skipped: %s", e)
            return None
        if not resp.is_success:
            return None
        return srt_to_text(resp.text) or None

    # ── Account ───────────────────────────────────────────────────────

    async def fetch_account(self, account_id: str) -> AccountMetadata:
        url = f"{ACCOUNT_API_URL}?{urlencode({'sec_uid': account_id})}"
        try:
            resp = await self.client.get(url, headers={
                "User-Agent": DESKTOP_UA,
                "Accept-Language": ACCEPT_LANGUAGE,
            })
        except httpx.HTTPError as e:
            raise MetadataError(f"用户信息请求失败：{type(e).__name__}")
        if not resp.is_success:
            raise MetadataError(f"用户信息请求失败 ({resp.status_code})")

        data = json_or_none(resp)
        info = data.get('user_info') if isinstance(data, dict) else None
        if not info:
            raise MetadataError("用户信息为空")

        followers = info.get('mplatform_followers_count')
        likes = info.get('total_favorited')
        return AccountMetadata(
            account_id=info.get('sec_uid') or account_id,
            nickname=info.get('nickname') or "",
            bio=info.get('signature') or "",
            unique_id=info.get('unique_id') or None,
            avatar_url=_first_url(info.get('avatar_thumb'), info.get('avatar_medium')),
            stats=AccountStats(
                followers=format_count(followers),
                following=format_count(info.get('following_count')),
                likes=format_count(likes),
                post_count=format_count(info.get('aweme_count')),
            ),
            raw_followers=_as_int(followers),
            raw_likes=_as_int(likes),
        )

    # ── Account listing ───────────────────────────────────────────────

    async def _signed_listing_url(self, account_id: str, count: int) -> str:
        query = urlencode({
            'device_platform': 'webapp',
            'aid': '6383',
            'channel': 'channel_pc_web',
            'sec_user_id': account_id,
            'max_cursor': '0',
            'count': str(count),
        })
        signature = await asyncio.to_thread(self.signer.sign, query, DESKTOP_UA)
        return f"{ACCOUNT_LIST_URL}?{query}&a_bogus={quote(signature, safe='')}"

    async def _fetch_listing_once(self, url: str, account_id: str) -> list | None:
        """One listing attempt; None means a structural failure worth one retry."""
        session = await self.sessions.get_session()
        try:
            resp = await self.client.get(url, headers={
                "User-Agent": DESKTOP_UA,
                "Accept": "application/json, text/plain, */*",
                "Accept-Language": ACCEPT_LANGUAGE,
                "Referer": ACCOUNT_PAGE_URL.format(account_id=quote(account_id, safe='')),
                "Cookie": session.cookie_header,
            })
        except httpx.HTTPError as e:
            logger.warning("Account listing request failed: %s", type(e).__name__)
            return None

        if not resp.is_success:
            logger.warning("Account listing HTTP %d", resp.status_code)
            return None

        data = json_or_none(resp)
        if data is None:
            logger.warning("Account listing body is not JSON")
            return None

        if not isinstance(data, dict) or data.get('status_code') != 0 \
                or not isinstance(data.get('aweme_list'), list):
            status = data.get('status_code') if isinstance(data, dict) else None
            logger.warning("Account listing has unexpected shape (status_code=%s)", status)
            return None

        if not data['aweme_list']:
            logger.warning("Account listing is empty")
            return None

        return data['aweme_list']

    async def fetch_account_videos(self, account_id: str,
                                   count: int = LIST_DEFAULT_COUNT) -> list[VideoMetadata]:
        """
        Most-liked videos of an account, best first. Never raises: callers get
        an empty list and decide whether to continue without captions.
        """
        count = clamp_count(count)
        try:
            url = await self._signed_listing_url(account_id, count)
            items = None
            for attempt in range(2):
                items = await self._fetch_listing_once(url, account_id)
                if items is not None:
                    break
                if attempt == 0:
                    self.sessions.invalidate()
        except CaptionError as e:
            logger.warning("Account listing unavailable: %s", e)
            return []

        if not items:
            return []

        videos = [self._parse_listing_item(item) for item in items if isinstance(item, dict)]
        videos = [v for v in videos if v.id]
        videos.sort(key=lambda v: v.stats.likes or 0, reverse=True)
        return videos[:count]

    @staticmethod
    def _parse_listing_item(item: dict) -> VideoMetadata:
        video = item.get('video') or {}
        return VideoMetadata(
            id=str(item.get('aweme_id') or item.get('awemeId') or ""),
            description=item.get('desc') or item.get('title') or "无标题",
            created_at=_as_int(item.get('create_time') or item.get('createTime')),
            duration_ms=_as_int(video.get('duration')),
            cover_url=(_first_url(video.get('cover'), video.get('origin_cover'),
                                  video.get('dynamic_cover')) or item.get('cover_url')),
            author=_parse_author(item.get('author') or {}),
            stats=_parse_stats(item.get('statistics') or item.get('stats') or {}),
            media_url=_media_url(video),
        )
