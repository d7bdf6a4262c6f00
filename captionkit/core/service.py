"""
CaptionService: the one object callers hold.

Owns the shared HTTP client, the anti-bot session cache and the task
registry, and exposes resolution, metadata lookup and caption tasks.
"""

import asyncio
import logging
import time

import httpx

from captionkit.core.config import AppConfig
from captionkit.core.constants import (
    LinkKind, Provider, ErrorCode, LIST_DEFAULT_COUNT, CALLER_WAIT_BUDGET_SEC,
    POLL_INTERVAL_SEC,
)
from captionkit.core.diagnostics import get_diagnostics
from captionkit.core.download_media import probe_media
from captionkit.core.error_codes import ASRError, CaptionError, LinkError
from captionkit.core.metadata import MetadataFetcher
from captionkit.core.models import (
    ResolvedLink, VideoMetadata, AccountMetadata, AccountVideos, LinkTestResult,
    TaskSnapshot, AsrCredentials,
)
from captionkit.core.net import create_http_client
from captionkit.core.resolver import LinkResolver
from captionkit.core.session import SessionManager
from captionkit.core.signature import SignatureEngine, QuerySigner
from captionkit.core.task_manager import TranscriptionTaskManager
from captionkit.core.transcribe_base import AsrAdapter
from captionkit.core.transcribe_flash import FlashAdapter
from captionkit.core.transcribe_upload_poll import UploadPollAdapter
from captionkit.core.url_parse import parse_video_id, parse_account_id

logger = logging.getLogger(__name__)


def build_adapters(client: httpx.AsyncClient, config: AppConfig) -> dict[str, AsrAdapter]:
    return {
        Provider.FLASH: FlashAdapter(client, config.ffmpeg_path, config.max_media_bytes),
        Provider.UPLOAD_POLL: UploadPollAdapter(client, max_media_bytes=config.max_media_bytes),
    }


class CaptionService:

    def __init__(self, config: AppConfig | None = None,
                 client: httpx.AsyncClient | None = None,
                 engine: SignatureEngine | None = None,
                 adapters: dict[str, AsrAdapter] | None = None):
        self.config = config or AppConfig()
        self._owns_client = client is None
        self.client = client or create_http_client(self.config.http_timeout_sec)

        self.sessions = SessionManager(
            self.client, engine or SignatureEngine(self.config.signature_timeout_ms))
        self.signer = QuerySigner(self.config.signer_script_path or None,
                                  self.config.signature_timeout_ms)
        self.resolver = LinkResolver(self.client)
        self.fetcher = MetadataFetcher(self.client, self.sessions, self.signer)
        self.adapters = adapters or build_adapters(self.client, self.config)
        self.tasks = TranscriptionTaskManager(
            self.resolver, self.fetcher, self.adapters, ttl_sec=self.config.task_ttl_sec)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.tasks.aclose()
        if self._owns_client:
            await self.client.aclose()

    # ── Resolution ────────────────────────────────────────────────────

    async def resolve(self, text: str) -> ResolvedLink:
        self.tasks.sweep()
        return await self.resolver.resolve(text)

    async def link_test(self, text: str) -> LinkTestResult:
        """
        Resolve and check that the target is reachable without downloading it.
        Only an unusable or unsafe input raises; reachability problems are
        reported through ok/message.
        """
        link = await self.resolve(text)
        result = LinkTestResult(link=link)

        if link.kind == LinkKind.UNKNOWN:
            result.message = "可解析到抖音域名，但无法判断是账号还是视频链接"
            return result

        if link.kind == LinkKind.ACCOUNT:
            if not link.account_id:
                result.message = "链接看起来是账号链接，但无法识别 sec_uid"
                return result
            try:
                await self.fetcher.fetch_account(link.account_id)
            except CaptionError as e:
                result.message = e.message or "账号链接不可访问"
                return result
            result.ok = True
            result.message = "账号链接可访问"
            return result

        if not link.video_id:
            result.message = "链接看起来是视频链接，但无法识别视频 ID"
            return result

        try:
            meta = await self.fetcher.fetch_video(link.video_id)
        except CaptionError as e:
            result.message = e.message or "视频链接不可访问"
            return result

        result.has_caption = meta.has_caption
        if not meta.media_url:
            result.message = "已解析到视频信息，但无法获取播放地址（可能权限受限或视频不可用）"
            return result

        try:
            ok, status, method = await probe_media(self.client, meta.media_url)
        except (LinkError, httpx.HTTPError) as e:
            detail = e.message if isinstance(e, LinkError) else type(e).__name__
            result.media_probe_ok = False
            result.message = f"视频播放地址探测失败：{detail}"
            return result

        result.media_probe_ok = ok
        result.media_probe_status = status
        result.media_probe_method = method
        if ok:
            result.ok = True
            result.message = ("链接可访问（该视频自带字幕）" if meta.has_caption
                              else "链接可访问（可进行语音识别提取口播文案）")
        elif status:
            result.message = f"视频播放地址可能受限 (HTTP {status})"
        else:
            result.message = "视频播放地址探测失败"
        return result

    # ── Metadata ──────────────────────────────────────────────────────

    async def get_video(self, url: str) -> VideoMetadata:
        link = await self.resolve(url)
        video_id = link.video_id or parse_video_id(link.resolved_url)
        if not video_id:
            raise LinkError("无法识别视频 ID")
        return await self.fetcher.fetch_video(video_id)

    async def get_account(self, url: str) -> AccountMetadata:
        link = await self.resolve(url)
        account_id = link.account_id or parse_account_id(link.resolved_url)
        if not account_id:
            raise LinkError("无法识别 sec_uid")
        return await self.fetcher.fetch_account(account_id)

    async def get_account_videos(self, url: str, count: int = LIST_DEFAULT_COUNT) -> AccountVideos:
        """Top videos of an account; bad input or upstream failure yields an empty result."""
        try:
            link = await self.resolve(url)
        except CaptionError as e:
            logger.info("Account video listing skipped: %s", e)
            return AccountVideos()

        account_id = link.account_id or parse_account_id(link.resolved_url)
        if not account_id:
            return AccountVideos()
        videos = await self.fetcher.fetch_account_videos(account_id, count)
        return AccountVideos(account_id=account_id, videos=videos)

    # ── Caption tasks ─────────────────────────────────────────────────

    async def create_caption(self, work_url: str, provider: str | None = None,
                             credentials: AsrCredentials | dict | None = None) -> TaskSnapshot:
        return await self.tasks.create(work_url, provider, credentials)

    def query_caption(self, task_id: str) -> TaskSnapshot:
        return self.tasks.query(task_id)

    def cancel_caption(self, task_id: str) -> TaskSnapshot:
        return self.tasks.cancel(task_id)

    async def wait_for_caption(self, task_id: str,
                               timeout: float = CALLER_WAIT_BUDGET_SEC,
                               interval: float = POLL_INTERVAL_SEC) -> TaskSnapshot:
        """Poll a task until it is terminal; raises ASRError once the caller budget runs out."""
        deadline = time.monotonic() + timeout
        while True:
            snapshot = self.query_caption(task_id)
            if snapshot.is_terminal:
                return snapshot
            if time.monotonic() >= deadline:
                raise ASRError("文案提取超时，请稍后重试", ErrorCode.CAPTION_TIMEOUT)
            await asyncio.sleep(interval)

    # ── Diagnostics ───────────────────────────────────────────────────

    async def get_diagnostics(self) -> dict:
        self.tasks.sweep()
        info = await get_diagnostics(self.config.ffmpeg_path,
                                     self.config.signer_script_path, self.sessions)
        info["tasks"] = len(self.tasks)
        return info
