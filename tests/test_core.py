#!/usr/bin/env python3
"""
Unit tests for DouyinCaptionExtractor core modules.
Tests cover: URL parsing, security utils, error codes, config, metadata helpers.
"""

import sys
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from captionkit.core.config import AppConfig
from captionkit.core.constants import ErrorCode, LinkKind, Provider, STAGE_ORDER, TaskStage
from captionkit.core.error_codes import (
    CaptionError, LinkError, TranscodeError, CancellationError, CredentialsError, tail_text,
)
from captionkit.core.metadata import (
    format_count, srt_to_text, clamp_count, parse_router_data,
)
from captionkit.core.error_codes import MetadataError
from captionkit.core.models import AsrCredentials, TaskSnapshot
from captionkit.core.security_utils import (
    assert_safe_url, assert_safe_domain, is_internal_host,
)
from captionkit.core.transcribe_base import resolve_provider
from captionkit.core.url_parse import (
    extract_url, extract_or_normalize, normalize_url, classify,
    parse_video_id, parse_account_id,
)


class TestURLParsing(unittest.TestCase):
    """Test share-text extraction and link classification."""

    def test_extract_from_share_text(self):
        self.assertEqual(
            extract_url("快来看 https://v.douyin.com/abc123/ 超好笑！"),
            "https://v.douyin.com/abc123/",
        )

    def test_extract_stops_at_cjk_punctuation(self):
        self.assertEqual(
            extract_url("复制打开抖音 https://v.douyin.com/abc123/，看看"),
            "https://v.douyin.com/abc123/",
        )

    def test_extract_strips_trailing_punctuation(self):
        self.assertEqual(
            extract_url("see https://v.douyin.com/abc123/."),
            "https://v.douyin.com/abc123/",
        )

    def test_extract_schemeless_short_link(self):
        self.assertEqual(
            extract_url("8.92 复制 v.douyin.com/xYz9/ 打开"),
            "https://v.douyin.com/xYz9/",
        )

    def test_extract_prefers_platform_domain(self):
        text = "https://example.com/a and https://www.douyin.com/video/7300000000000000001"
        self.assertEqual(extract_url(text), "https://www.douyin.com/video/7300000000000000001")

    def test_extract_none(self):
        self.assertIsNone(extract_url("no link here"))
        self.assertIsNone(extract_url(""))
        self.assertIsNone(extract_url(None))

    def test_extract_or_normalize_bare_token(self):
        self.assertEqual(
            extract_or_normalize("www.douyin.com/video/123"),
            "https://www.douyin.com/video/123",
        )
        self.assertIsNone(extract_or_normalize("two words"))

    def test_normalize_url(self):
        self.assertEqual(normalize_url("  douyin.com/x。 "), "https://douyin.com/x")
        self.assertEqual(normalize_url("http://douyin.com/x"), "http://douyin.com/x")

    def test_classify(self):
        self.assertEqual(classify("https://www.douyin.com/video/123"), LinkKind.VIDEO)
        self.assertEqual(classify("https://www.iesdouyin.com/share/video/123/"), LinkKind.VIDEO)
        self.assertEqual(classify("https://www.douyin.com/user/MS4wLjAB"), LinkKind.ACCOUNT)
        self.assertEqual(classify("https://www.iesdouyin.com/share/user/MS4wLjAB"), LinkKind.ACCOUNT)
        self.assertEqual(classify("https://www.douyin.com/discover"), LinkKind.UNKNOWN)

    def test_parse_video_id(self):
        self.assertEqual(parse_video_id("https://www.iesdouyin.com/share/video/123/?region=CN"), "123")
        self.assertEqual(parse_video_id("https://www.douyin.com/video/7300000000000000001"),
                         "7300000000000000001")
        self.assertEqual(parse_video_id("https://www.douyin.com/discover?aweme_id=42"), "42")
        self.assertIsNone(parse_video_id("https://www.douyin.com/discover"))

    def test_parse_account_id(self):
        self.assertEqual(parse_account_id("https://www.douyin.com/user/MS4wLjAB?from=x"), "MS4wLjAB")
        self.assertEqual(parse_account_id("https://www.iesdouyin.com/share/user/abc/"), "abc")
        self.assertEqual(parse_account_id("https://www.douyin.com/x?sec_uid=def"), "def")
        self.assertIsNone(parse_account_id("https://www.douyin.com/video/1"))


class TestSecurityUtils(unittest.TestCase):
    """Test the SSRF guard and platform allow-list."""

    def test_loopback_rejected(self):
        with self.assertRaises(LinkError):
            assert_safe_url("http://127.0.0.1/x")

    def test_metadata_endpoint_rejected(self):
        with self.assertRaises(LinkError) as ctx:
            assert_safe_url("http://169.254.169.254/")
        self.assertEqual(ctx.exception.code, ErrorCode.UNSAFE_LINK)

    def test_internal_hosts(self):
        for host in ("localhost", "10.0.0.1", "192.168.1.5", "::1", "::ffff:127.0.0.1",
                     "printer.local", "0.0.0.0"):
            self.assertTrue(is_internal_host(host), host)
        self.assertFalse(is_internal_host("www.douyin.com"))
        self.assertFalse(is_internal_host("8.8.8.8"))

    def test_non_http_scheme_rejected(self):
        with self.assertRaises(LinkError) as ctx:
            assert_safe_url("ftp://www.douyin.com/x")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_LINK)
        with self.assertRaises(LinkError):
            assert_safe_url("file:///etc/passwd")

    def test_public_url_accepted(self):
        parsed = assert_safe_url("https://cdn.example.com/v.mp4")
        self.assertEqual(parsed.hostname, "cdn.example.com")

    def test_safe_domain(self):
        assert_safe_domain("https://v.douyin.com/abc/")
        assert_safe_domain("https://www.iesdouyin.com/share/video/1/")
        with self.assertRaises(LinkError):
            assert_safe_domain("https://example.com/video/1")
        with self.assertRaises(LinkError):
            assert_safe_domain("https://douyin.com.evil.com/")


class TestErrorCodes(unittest.TestCase):

    def test_default_codes(self):
        self.assertEqual(LinkError("x").code, ErrorCode.INVALID_LINK)
        self.assertEqual(TranscodeError("x").code, ErrorCode.TRANSCODE_FAILED)
        self.assertEqual(CancellationError().code, ErrorCode.CANCELLED)

    def test_str_includes_code(self):
        err = CaptionError("boom", ErrorCode.ASR_FAILED)
        self.assertEqual(str(err), "[ERR_ASR_FAILED] boom")
        self.assertEqual(err.message, "boom")

    def test_cancellation_message(self):
        self.assertEqual(CancellationError().message, "已取消请求。")

    def test_tail_text(self):
        self.assertEqual(tail_text("abcdef", 3), "def")
        self.assertEqual(tail_text("ab", 3), "ab")
        self.assertEqual(tail_text(None, 3), "")
        self.assertEqual(len(tail_text("x" * 5000)), 1200)


class TestStages(unittest.TestCase):

    def test_stage_order_is_forward(self):
        order = [TaskStage.QUEUED, TaskStage.DOWNLOADING, TaskStage.UPLOADING,
                 TaskStage.SUBMITTING, TaskStage.POLLING, TaskStage.FETCHING_RESULT,
                 TaskStage.DONE]
        ranks = [STAGE_ORDER[s] for s in order]
        self.assertEqual(ranks, sorted(ranks))
        self.assertEqual(STAGE_ORDER[TaskStage.FAILED], STAGE_ORDER[TaskStage.DONE])

    def test_snapshot_omits_empty_fields(self):
        snap = TaskSnapshot(task_id="t", status="RUNNING", stage="polling",
                            message="m", created_at=1, updated_at=2)
        data = snap.to_dict()
        self.assertEqual(data["taskId"], "t")
        self.assertNotIn("transcript", data)
        self.assertNotIn("error", data)
        self.assertNotIn("tempStorageUrl", data)


class TestProviders(unittest.TestCase):

    def test_aliases(self):
        creds = AsrCredentials()
        self.assertEqual(resolve_provider("doubao", creds), Provider.FLASH)
        self.assertEqual(resolve_provider("DashScope", creds), Provider.UPLOAD_POLL)
        self.assertEqual(resolve_provider("upload_poll", creds), Provider.UPLOAD_POLL)

    def test_default_by_credentials(self):
        flash = AsrCredentials.from_dict({"doubaoAppId": "a", "doubaoToken": "t"})
        self.assertEqual(resolve_provider(None, flash), Provider.FLASH)
        other = AsrCredentials.from_dict({"dashscopeApiKey": "k"})
        self.assertEqual(resolve_provider("", other), Provider.UPLOAD_POLL)

    def test_unknown_name_rejected(self):
        flash = AsrCredentials.from_dict({"doubaoAppId": "a", "doubaoToken": "t"})
        with self.assertRaises(CredentialsError):
            resolve_provider("foo", flash)

    def test_credential_aliases(self):
        creds = AsrCredentials.from_dict({"appKey": " a ", "accessKey": "b", "apiKey": "c"})
        self.assertEqual((creds.app_key, creds.access_key, creds.api_key), ("a", "b", "c"))
        self.assertTrue(creds.has_flash)
        self.assertFalse(AsrCredentials.from_dict(None).has_flash)


class TestMetadataHelpers(unittest.TestCase):

    def test_format_count(self):
        self.assertEqual(format_count(12345), "1.23w")
        self.assertEqual(format_count(123456789), "1.23亿")
        self.assertEqual(format_count(9999), "9999")
        self.assertEqual(format_count("250"), "250")
        self.assertEqual(format_count(None), "-")
        self.assertEqual(format_count("abc"), "-")

    def test_srt_to_text(self):
        srt = ("1\n00:00:01,000 --> 00:00:02,000\n你好\n\n"
               "2\n00:00:02,000 --> 00:00:03,000\n世界\n")
        self.assertEqual(srt_to_text(srt), "你好 世界")

    def test_clamp_count(self):
        self.assertEqual(clamp_count(0), 10)
        self.assertEqual(clamp_count("abc"), 10)
        self.assertEqual(clamp_count(500), 50)
        self.assertEqual(clamp_count("7"), 7)

    def test_parse_router_data(self):
        html = ('<html><script>window._ROUTER_DATA = {"loaderData":{"video_(id)/page":'
                '{"videoInfoRes":{"item_list":[{"aweme_id":"1","desc":"hi"}]}}}};</script></html>')
        item = parse_router_data(html)
        self.assertEqual(item["aweme_id"], "1")

    def test_parse_router_data_missing(self):
        with self.assertRaises(MetadataError):
            parse_router_data("<html></html>")
        with self.assertRaises(MetadataError):
            parse_router_data('<script>window._ROUTER_DATA = {"loaderData":{}}</script>')


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = Path(self.tmpdir) / "config.json"

    def tearDown(self):
        import shutil
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_defaults(self):
        config = AppConfig(config_path=self.path, environ={})
        self.assertEqual(config.ffmpeg_path, "ffmpeg")
        self.assertEqual(config.task_ttl_sec, 3600)
        self.assertEqual(config.get('port'), 8765)
        self.assertEqual(config.log_level, "INFO")

    def test_clamping_and_persistence(self):
        config = AppConfig(config_path=self.path, environ={})
        config.set('http_timeout_sec', 1000)
        config.set('task_ttl_sec', 1)
        self.assertEqual(config.http_timeout_sec, 300)
        self.assertEqual(config.task_ttl_sec, 60)

        reloaded = AppConfig(config_path=self.path, environ={})
        self.assertEqual(reloaded.http_timeout_sec, 300)

    def test_env_override(self):
        config = AppConfig(config_path=self.path,
                           environ={"CAPTIONKIT_PORT": "9000", "CAPTIONKIT_LOG_LEVEL": "debug"})
        self.assertEqual(config.get('port'), 9000)
        self.assertEqual(config.log_level, "DEBUG")

    def test_invalid_values_fall_back(self):
        config = AppConfig(config_path=self.path,
                           environ={"CAPTIONKIT_LOG_LEVEL": "LOUD",
                                    "CAPTIONKIT_SIGNATURE_TIMEOUT_MS": "abc"})
        self.assertEqual(config.log_level, "INFO")
        self.assertEqual(config.signature_timeout_ms, 5000)


if __name__ == "__main__":
    unittest.main()
