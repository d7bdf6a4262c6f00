"""
Media download and reachability probe for playable video URLs.
"""

import logging
from urllib.parse import urljoin

import httpx

from captionkit.core.cancellation import CancelToken
from captionkit.core.constants import (
    MOBILE_UA, PLATFORM_REFERER, MAX_MEDIA_BYTES, MAX_REDIRECT_HOPS,
)
from captionkit.core.error_codes import DownloadError, LinkError
from captionkit.core.security_utils import assert_safe_url

logger = logging.getLogger(__name__)

_MEDIA_HEADERS = {
    "User-Agent": MOBILE_UA,
    "Referer": PLATFORM_REFERER,
}


async def _read_capped(resp: httpx.Response, max_bytes: int) -> bytes:
    chunks = []
    received = 0
    async for chunk in resp.aiter_bytes():
        received += len(chunk)
        if received > max_bytes:
            raise DownloadError(f"视频文件过大（超过 {max_bytes // (1024 * 1024)} MB）")
        chunks.append(chunk)
    return b"".join(chunks)


async def _download(client: httpx.AsyncClient, url: str, max_bytes: int) -> bytes:
    # CDN redirects are followed by hand so every hop passes the SSRF guard first.
    for _ in range(MAX_REDIRECT_HOPS):
        assert_safe_url(url)
        async with client.stream("GET", url, headers=_MEDIA_HEADERS) as resp:
            if resp.is_redirect:
                location = resp.headers.get("location")
                if not location:
                    raise DownloadError(f"下载视频失败 ({resp.status_code})")
                url = urljoin(url, location)
                continue
            if not resp.is_success:
                raise DownloadError(f"下载视频失败 ({resp.status_code})")
            return await _read_capped(resp, max_bytes)
    raise DownloadError("下载视频失败（跳转次数过多）")


async def download_media(client: httpx.AsyncClient, media_url: str,
                         token: CancelToken,
                         max_bytes: int = MAX_MEDIA_BYTES) -> bytes:
    """
    Download a media file into memory.
    SSRF-guarded, size-capped and raced against the task's cancel token.
    """
    try:
        assert_safe_url(media_url)
    except LinkError as e:
        raise DownloadError(f"媒体链接不安全：{e.message}")

    logger.debug("Downloading media: %s", media_url)
    try:
        data = await token.guard(_download(client, media_url, max_bytes))
    except LinkError as e:
        raise DownloadError(f"媒体跳转目标不安全：{e.message}")
    except httpx.HTTPError as e:
        raise DownloadError(f"下载视频失败：{type(e).__name__}")

    if not data:
        raise DownloadError("下载的视频为空")
    logger.info("Downloaded media (%d bytes)", len(data))
    return data


async def probe_media(client: httpx.AsyncClient, media_url: str) -> tuple[bool, int | None, str]:
    """
    Non-destructive reachability check.
    HEAD first; if that fails or is refused, a 2-byte ranged GET.
    Returns (ok, status, method) with method "HEAD" or "RANGE".
    """
    assert_safe_url(media_url)

    head_status = None
    try:
        resp = await client.head(media_url, headers=_MEDIA_HEADERS)
        head_status = resp.status_code
        if resp.is_success or resp.is_redirect:
            return True, head_status, "HEAD"
    except httpx.HTTPError as e:
        logger.debug("HEAD probe failed: %s", type(e).__name__)

    try:
        async with client.stream("GET", media_url,
                                 headers={**_MEDIA_HEADERS, "Range": "bytes=0-1"}) as resp:
            ok = resp.status_code in (200, 206) or resp.is_redirect
            return ok, resp.status_code, "RANGE"
    except httpx.HTTPError as e:
        logger.debug("Range probe failed: %s", type(e).__name__)
        if head_status is not None:
            return False, head_status, "HEAD"
        raise
