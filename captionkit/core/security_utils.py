"""
Security utilities for DouyinCaptionExtractor.
- SSRF guard for outbound URLs
- Platform domain allow-list
- Safe subprocess execution (argument arrays only)
"""

import asyncio
import ipaddress
import logging
from urllib.parse import urlsplit, SplitResult

from captionkit.core.constants import ErrorCode, PLATFORM_DOMAINS
from captionkit.core.error_codes import LinkError

logger = logging.getLogger(__name__)

_BLOCKED_HOSTS = {"localhost", "0.0.0.0", "127.0.0.1", "::1", "::", "metadata.google.internal"}
_BLOCKED_SUFFIXES = (".local", ".localhost", ".internal", ".localdomain")


# ── URL safety ────────────────────────────────────────────────────────

def _parse_http_url(url: str) -> SplitResult:
    try:
        parsed = urlsplit(str(url or "").strip())
        host = parsed.hostname
    except ValueError:
        raise LinkError("链接格式错误")
    if parsed.scheme.lower() not in ("http", "https"):
        raise LinkError("仅支持 http/https 链接")
    if not host:
        raise LinkError("链接格式错误")
    return parsed


def is_internal_host(host: str) -> bool:
    """True for loopback, link-local, private and other non-public targets."""
    host = host.lower().rstrip(".")
    if host in _BLOCKED_HOSTS or host.endswith(_BLOCKED_SUFFIXES):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return (ip.is_loopback or ip.is_link_local or ip.is_private
            or ip.is_unspecified or ip.is_reserved or ip.is_multicast)


def assert_safe_url(url: str) -> SplitResult:
    """
    Reject non-http(s) schemes and internal hostnames.
    Returns the parsed URL on success; raises LinkError otherwise.
    """
    parsed = _parse_http_url(url)
    if is_internal_host(parsed.hostname):
        raise LinkError("不安全的链接（可能为本机/内网地址）", ErrorCode.UNSAFE_LINK)
    return parsed


def is_platform_host(host: str) -> bool:
    host = (host or "").lower().rstrip(".")
    return any(host == d or host.endswith("." + d) for d in PLATFORM_DOMAINS)


def assert_safe_domain(url: str) -> SplitResult:
    """Stricter variant of assert_safe_url: the host must be a platform domain."""
    parsed = assert_safe_url(url)
    if not is_platform_host(parsed.hostname):
        raise LinkError("仅支持抖音链接（douyin.com / iesdouyin.com）", ErrorCode.UNSAFE_LINK)
    return parsed


# ── Subprocess safety ─────────────────────────────────────────────────

async def spawn_subprocess(args: list[str], **kwargs) -> asyncio.subprocess.Process:
    """
    Start a subprocess using argument arrays only.
    Shell execution is never used.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return await asyncio.create_subprocess_exec(*[str(a) for a in args], **kwargs)


async def run_subprocess_capture(args: list[str], timeout: float = 30) -> tuple[int, str, str]:
    """Run a subprocess to completion and capture (returncode, stdout, stderr)."""
    proc = await spawn_subprocess(
        args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return (
        proc.returncode,
        stdout.decode('utf-8', errors='replace'),
        stderr.decode('utf-8', errors='replace'),
    )
