"""
Share-link parsing: free text -> candidate URL -> video/account classification.
"""

import re
from urllib.parse import urlsplit, parse_qs, unquote

from captionkit.core.constants import LinkKind, PLATFORM_DOMAINS, SHORT_LINK_HOST

# A URL ends at whitespace, CJK punctuation, ideographs or fullwidth forms.
_URL_BODY = r'[^\s\u3000-\u303f\u4e00-\u9fff\uff00-\uffef]+'
_HTTP_URL_RE = re.compile(r'https?://' + _URL_BODY, re.IGNORECASE)
_SHORT_LINK_RE = re.compile(
    r'(?:^|\s)(' + re.escape(SHORT_LINK_HOST) + r'/' + _URL_BODY + r')',
    re.IGNORECASE,
)
# ASCII and common CJK closing punctuation
_TRAILING_PUNCT_RE = re.compile(
    r'[)\]}\'"’”、。，！？；：,!.?;:]+$'
)
_SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)

_VIDEO_PATH_RES = [
    re.compile(r'/share/video/(\d+)'),
    re.compile(r'/video/(\d+)'),
]
_ACCOUNT_PATH_RES = [
    re.compile(r'/share/user/([^/]+)'),
    re.compile(r'/user/([^/]+)'),
]


def normalize_url(value: str) -> str:
    """Trim, drop trailing punctuation and default the scheme to https."""
    url = value.strip()
    url = _TRAILING_PUNCT_RE.sub('', url)
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    return url


def _is_platform_candidate(url: str) -> bool:
    lowered = url.lower()
    return any(domain in lowered for domain in PLATFORM_DOMAINS)


def extract_url(text: str) -> str | None:
    """
    Find a URL inside pasted share text.
    Prefers a candidate on the platform's domain; returns None if none found.
    """
    text = (text or "").strip()
    if not text:
        return None

    matches = _HTTP_URL_RE.findall(text)
    matches.extend(m.strip() for m in _SHORT_LINK_RE.findall(text))
    if not matches:
        return None

    preferred = next((m for m in matches if _is_platform_candidate(m)), matches[0])
    return normalize_url(preferred)


def extract_or_normalize(text: str) -> str | None:
    """extract_url, falling back to a bare single-token input such as 'www.douyin.com/video/1'."""
    extracted = extract_url(text)
    if extracted:
        return extracted
    raw = (text or "").strip()
    if not raw or any(c.isspace() for c in raw):
        return None
    return normalize_url(raw)


def classify(url: str) -> str:
    """Guess whether a resolved URL points at a video, an account, or neither."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return LinkKind.UNKNOWN
    if '/share/video/' in path or '/video/' in path:
        return LinkKind.VIDEO
    if '/share/user/' in path or '/user/' in path:
        return LinkKind.ACCOUNT
    return LinkKind.UNKNOWN


def parse_video_id(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    for pattern in _VIDEO_PATH_RES:
        m = pattern.search(parts.path)
        if m:
            return m.group(1)
    qs = parse_qs(parts.query)
    for key in ('aweme_id', 'item_id'):
        value = qs.get(key, [None])[0]
        if value:
            return value
    return None


def parse_account_id(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    for pattern in _ACCOUNT_PATH_RES:
        m = pattern.search(parts.path)
        if m:
            return unquote(m.group(1))
    return parse_qs(parts.query).get('sec_uid', [None])[0]
