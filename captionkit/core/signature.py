"""
Sandboxed execution of platform-supplied JavaScript.

SignatureEngine runs the anti-bot challenge script from the home page inside
a fresh V8 isolate (mini-racer) that only sees a mocked browser surface:
document.cookie, navigator, location, history, performance and no-op
storages. Nothing in the isolate can reach back into this process.

QuerySigner evaluates the bundled (or an operator-supplied) signer script the
same way to produce the lighter per-query signature of the listing endpoint.
"""

import json
import logging
import re
import time
from pathlib import Path

from py_mini_racer import MiniRacer, JSEvalException, JSOOMException, JSTimeoutException

from captionkit.core.constants import (
    SIGNATURE_TIMEOUT_MS, NONCE_COOKIE, CHALLENGE_INIT_ARGS, PLATFORM_HOME_URL,
    DEFAULT_SIGNER_SCRIPT,
)
from captionkit.core.error_codes import SignatureError

logger = logging.getLogger(__name__)

_INLINE_SCRIPT_RE = re.compile(r'<script>([\s\S]*?)</script>')

_BROWSER_PRELUDE = """
(function (g) {
  var noop = function () {};
  var storage = function () {
    return { setItem: noop, getItem: function () { return null; }, removeItem: noop, clear: noop };
  };
  g.window = g;
  g.self = g;
  g.global = g;
  g.console = { log: noop, info: noop, warn: noop, error: noop, debug: noop };
  g.setTimeout = function () { return 0; };
  g.clearTimeout = noop;
  g.setInterval = function () { return 0; };
  g.clearInterval = noop;
  g.document = {
    cookie: %(cookie)s,
    referrer: '',
    createElement: function () { return {}; },
    getElementsByTagName: function () { return []; },
    addEventListener: noop
  };
  g.navigator = {
    userAgent: %(user_agent)s,
    language: 'zh-CN',
    languages: ['zh-CN', 'zh'],
    platform: 'Win32',
    webdriver: false
  };
  g.location = {
    protocol: 'https:',
    href: %(href)s,
    origin: 'https://www.douyin.com',
    host: 'www.douyin.com',
    hostname: 'www.douyin.com',
    port: '',
    pathname: '/',
    search: '',
    hash: '',
    reload: noop,
    replace: noop
  };
  g.history = {};
  g.performance = { timing: { navigationStart: %(now_ms)d }, now: function () { return 0; } };
  g.sessionStorage = storage();
  g.localStorage = storage();
})(this);
"""

_CHALLENGE_SIGN_CALL = """
(function () {
  var crawler = window.byted_acrawler;
  if (!crawler || typeof crawler.sign !== 'function') { return null; }
  if (typeof crawler.init === 'function') { crawler.init(%(init_args)s); }
  return crawler.sign('', %(nonce)s);
})()
"""

_MODULE_SHIM = "var module = { exports: {} }; var exports = module.exports;"

_QUERY_SIGN_CALL = """
(function () {
  var fn = typeof generate_a_bogus === 'function' ? generate_a_bogus : module.exports.generate_a_bogus;
  if (typeof fn !== 'function') { return null; }
  return fn(%(query)s, %(user_agent)s);
})()
"""


def extract_inline_scripts(html: str) -> list[str]:
    return _INLINE_SCRIPT_RE.findall(html or "")


def _prelude(cookie: str, user_agent: str) -> str:
    return _BROWSER_PRELUDE % {
        "cookie": json.dumps(cookie),
        "user_agent": json.dumps(user_agent),
        "href": json.dumps(PLATFORM_HOME_URL),
        "now_ms": int(time.time() * 1000),
    }


class _Budget:
    """Wall-clock budget shared by the evals of one run."""

    def __init__(self, timeout_ms: int):
        self.deadline = time.monotonic() + timeout_ms / 1000.0

    def remaining_ms(self) -> int:
        left = int((self.deadline - time.monotonic()) * 1000)
        if left <= 0:
            raise SignatureError("签名脚本执行超时")
        return left


def _run_sandboxed(sources: list[str], timeout_ms: int):
    """Evaluate sources in order inside one fresh isolate; return the last value."""
    budget = _Budget(timeout_ms)
    ctx = MiniRacer()
    result = None
    try:
        for source in sources:
            result = ctx.eval(source, timeout=budget.remaining_ms())
    except JSTimeoutException:
        raise SignatureError("签名脚本执行超时")
    except (JSEvalException, JSOOMException) as e:
        raise SignatureError(f"签名脚本执行失败：{type(e).__name__}")
    return result


class SignatureEngine:
    """Pure transform (html, nonce, user agent) -> challenge signature."""

    def __init__(self, timeout_ms: int = SIGNATURE_TIMEOUT_MS):
        self.timeout_ms = timeout_ms

    def compute(self, html: str, nonce: str, user_agent: str) -> str:
        scripts = extract_inline_scripts(html)
        if not scripts or not scripts[0].strip():
            raise SignatureError("抖音签名脚本缺失")

        sign_call = _CHALLENGE_SIGN_CALL % {
            "init_args": json.dumps(CHALLENGE_INIT_ARGS),
            "nonce": json.dumps(nonce),
        }
        signature = _run_sandboxed(
            [_prelude(f"{NONCE_COOKIE}={nonce}", user_agent), scripts[0], sign_call],
            self.timeout_ms,
        )
        if not signature or not isinstance(signature, str):
            raise SignatureError("抖音签名计算失败")
        return signature


class QuerySigner:
    """
    Signs listing query strings with a script that defines a global
    generate_a_bogus(queryString, userAgent) function. Without a configured
    path the bundled a_bogus.js is used.
    """

    def __init__(self, script_path: str | Path | None = None, timeout_ms: int = SIGNATURE_TIMEOUT_MS):
        self.script_path = Path(script_path) if script_path else DEFAULT_SIGNER_SCRIPT
        self.timeout_ms = timeout_ms

    @property
    def available(self) -> bool:
        return self.script_path.is_file()

    def _load_script(self) -> str:
        try:
            return self.script_path.read_text(encoding="utf-8")
        except OSError as e:
            raise SignatureError(f"无法读取列表签名脚本：{e.strerror or e}")

    def sign(self, query: str, user_agent: str) -> str:
        source = self._load_script()
        call = _QUERY_SIGN_CALL % {
            "query": json.dumps(query),
            "user_agent": json.dumps(user_agent),
        }
        signature = _run_sandboxed([_prelude("", user_agent), _MODULE_SHIM, source, call], self.timeout_ms)
        if not signature or not isinstance(signature, str):
            raise SignatureError("列表签名计算失败")
        return signature
