"""
LinkResolver: free text -> safe platform URL -> redirects walked -> ResolvedLink.
"""

import logging
from urllib.parse import urljoin, urlunsplit

import httpx

from captionkit.core.constants import (
    LinkKind, DESKTOP_UA, ACCEPT_LANGUAGE, MAX_REDIRECT_HOPS,
)
from captionkit.core.error_codes import LinkError, ResolutionError
from captionkit.core.models import ResolvedLink
from captionkit.core.security_utils import assert_safe_domain
from captionkit.core.url_parse import (
    extract_or_normalize, classify, parse_video_id, parse_account_id,
)

logger = logging.getLogger(__name__)


class LinkResolver:
    """Resolves share links against the platform. Stateless apart from the client."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def resolve_redirects(self, url: str, max_hops: int = MAX_REDIRECT_HOPS) -> str:
        """
        Follow 3xx responses by hand, re-checking the domain guard on every hop.
        Returns the first non-redirecting URL, or the last one seen at the hop limit.
        """
        current = url
        for hop in range(max_hops):
            try:
                parsed = assert_safe_domain(current)
            except LinkError as e:
                if hop == 0:
                    raise
                raise ResolutionError(f"跳转目标不安全：{e.message}")
            current = urlunsplit(parsed)
            try:
                resp = await self.client.get(current, headers={
                    "User-Agent": DESKTOP_UA,
                    "Accept-Language": ACCEPT_LANGUAGE,
                })
            except httpx.HTTPError as e:
                raise ResolutionError(f"跳转解析失败：{type(e).__name__}")

            if 300 <= resp.status_code < 400:
                location = resp.headers.get("location")
                if not location:
                    return current
                current = urljoin(current, location)
                continue

            return current

        logger.info("Redirect hop limit (%d) reached at %s", max_hops, current)
        try:
            assert_safe_domain(current)
        except LinkError as e:
            raise ResolutionError(f"跳转目标不安全：{e.message}")
        return current

    async def resolve(self, text: str) -> ResolvedLink:
        """
        Extract, guard and resolve a share link. A failed redirect walk falls
        back to the extracted URL; an unsafe target raises LinkError.
        """
        extracted = extract_or_normalize(text)
        if not extracted:
            raise LinkError("未找到有效链接")
        assert_safe_domain(extracted)

        try:
            resolved = await self.resolve_redirects(extracted)
        except ResolutionError as e:
            logger.warning("Falling back to extracted URL: %s", e.message)
            resolved = extracted

        kind = classify(resolved)
        return ResolvedLink(
            extracted_url=extracted,
            resolved_url=resolved,
            kind=kind,
            video_id=parse_video_id(resolved) if kind == LinkKind.VIDEO else None,
            account_id=parse_account_id(resolved) if kind == LinkKind.ACCOUNT else None,
        )
