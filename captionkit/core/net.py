"""
Shared HTTP client construction and small response helpers.
"""

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy

import httpx

from captionkit.core.constants import HTTP_TIMEOUT_SEC, ACCEPT_LANGUAGE

logger = logging.getLogger(__name__)


def _no_cookie_jar() -> CookieJar:
    # Every request carries exactly the Cookie header its caller built.
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def create_http_client(timeout: float = HTTP_TIMEOUT_SEC,
                       transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    Build the AsyncClient shared by one CaptionService.
    Redirects are never followed automatically; the resolver walks them by hand.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=False,
        cookies=_no_cookie_jar(),
        headers={"Accept-Language": ACCEPT_LANGUAGE},
        transport=transport,
    )


def set_cookies(response: httpx.Response) -> list[str]:
    return response.headers.get_list("set-cookie")


def pick_cookie_value(set_cookie_headers: list[str], name: str) -> str | None:
    for header in set_cookie_headers:
        pair = header.split(";", 1)[0]
        key, sep, value = pair.partition("=")
        if sep and key.strip() == name:
            return value.strip()
    return None


def parse_set_cookie_pairs(set_cookie_headers: list[str]) -> dict[str, str]:
    """name -> value for every Set-Cookie header, later headers winning."""
    jar: dict[str, str] = {}
    for header in set_cookie_headers:
        pair = header.split(";", 1)[0]
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            jar[key.strip()] = value.strip()
    return jar


def json_or_none(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return None
