"""
Shared constants for DouyinCaptionExtractor.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "DouyinCaptionExtractor"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".config" / APP_NAME
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_DIR = HOME / ".local" / "state" / APP_NAME / "logs"
TEMP_DIR_PREFIX = "captionkit-asr-"

# ── Task status values ────────────────────────────────────────────────
class TaskStatus:
    WAITING = "WAITING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCELLED = "CANCELLED"

TERMINAL_STATUSES = frozenset({
    TaskStatus.SUCCESS,
    TaskStatus.FAILURE,
    TaskStatus.CANCELLED,
})

# ── Task stage values (ordered) ───────────────────────────────────────
class TaskStage:
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    SUBMITTING = "submitting"
    POLLING = "polling"
    FETCHING_RESULT = "fetching_result"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

# Forward order of the progress stages; the three terminal stages share a rank.
STAGE_ORDER = {
    TaskStage.QUEUED: 0,
    TaskStage.DOWNLOADING: 1,
    TaskStage.UPLOADING: 2,
    TaskStage.SUBMITTING: 3,
    TaskStage.POLLING: 4,
    TaskStage.FETCHING_RESULT: 5,
    TaskStage.DONE: 6,
    TaskStage.FAILED: 6,
    TaskStage.CANCELLED: 6,
}

# ── Link kinds ────────────────────────────────────────────────────────
class LinkKind:
    VIDEO = "video"
    ACCOUNT = "account"
    UNKNOWN = "unknown"

# ── ASR providers ─────────────────────────────────────────────────────
class Provider:
    FLASH = "flash"
    UPLOAD_POLL = "upload_poll"

PROVIDER_ALIASES = {
    "flash": Provider.FLASH,
    "doubao": Provider.FLASH,
    "upload_poll": Provider.UPLOAD_POLL,
    "dashscope": Provider.UPLOAD_POLL,
}

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    INVALID_LINK = "ERR_INVALID_LINK"
    UNSAFE_LINK = "ERR_UNSAFE_LINK"
    RESOLUTION_FAILED = "ERR_RESOLUTION_FAILED"
    METADATA_FAILED = "ERR_METADATA_FAILED"
    MEDIA_URL_MISSING = "ERR_MEDIA_URL_MISSING"
    SESSION_FAILED = "ERR_SESSION_FAILED"
    SIGNATURE_FAILED = "ERR_SIGNATURE_FAILED"
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"
    TRANSCODE_FAILED = "ERR_TRANSCODE_FAILED"
    ASR_FAILED = "ERR_ASR_FAILED"
    ASR_EMPTY = "ERR_ASR_EMPTY"
    ASR_TIMEOUT = "ERR_ASR_TIMEOUT"
    CAPTION_TIMEOUT = "ERR_CAPTION_TIMEOUT"
    MISSING_CREDENTIALS = "ERR_MISSING_CREDENTIALS"
    TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    CANCELLED = "ERR_CANCELLED"

CANCELLED_MESSAGE = "已取消请求。"

# ── Platform (anti-bot session / scraping) ────────────────────────────
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.2 Mobile/15E148 Safari/604.1"
)
ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9"

PLATFORM_HOME_URL = "https://www.douyin.com/"
PLATFORM_REFERER = "https://www.douyin.com/"
PLATFORM_DOMAINS = ("douyin.com", "iesdouyin.com")
SHORT_LINK_HOST = "v.douyin.com"

NONCE_COOKIE = "__ac_nonce"
SIGNATURE_COOKIE = "__ac_signature"
REFERER_COOKIE = "__ac_referer=__ac_blank"

SESSION_TTL_SEC = 29 * 60
SESSION_REFRESH_MARGIN_SEC = 60
SIGNATURE_TIMEOUT_MS = 5000
CHALLENGE_INIT_ARGS = {"aid": 99999999, "dfp": 0}
# Listing signer used when signer_script_path is empty
DEFAULT_SIGNER_SCRIPT = pathlib.Path(__file__).resolve().parent / "a_bogus.js"

VIDEO_PAGE_URL = "https://www.iesdouyin.com/share/video/{video_id}/?region=CN&from=web_code_link"
ACCOUNT_API_URL = "https://www.iesdouyin.com/web/api/v2/user/info/"
ACCOUNT_LIST_URL = "https://www.douyin.com/aweme/v1/web/aweme/post/"
ACCOUNT_PAGE_URL = "https://www.douyin.com/user/{account_id}"
LIST_DEFAULT_COUNT = 10
LIST_MAX_COUNT = 50

MAX_REDIRECT_HOPS = 6

# ── Media / transcoder ────────────────────────────────────────────────
DEFAULT_FFMPEG_PATH = "ffmpeg"
MAX_MEDIA_BYTES = 200 * 1024 * 1024
NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_BITRATE = "64k"
NORM_FORMAT = "mp3"
STDERR_BUFFER_CHARS = 20_000
ERROR_TAIL_CHARS = 1200

# ── Flash recognizer (Doubao big-model, synchronous) ──────────────────
FLASH_URL = "https://openspeech.bytedance.com/api/v3/auc/bigmodel/recognize/flash"
FLASH_RESOURCE_ID = "volc.bigasr.auc_turbo"
FLASH_SUCCESS_CODE = 20000000

# ── Upload-and-poll recognizer (DashScope Paraformer, asynchronous) ───
DASHSCOPE_API_BASE = "https://dashscope.aliyuncs.com/api/v1"
DASHSCOPE_MODEL = "paraformer-v2"
DASHSCOPE_LANGUAGE_HINTS = ["zh", "en"]
POLL_INTERVAL_SEC = 2.0
POLL_MAX_WAIT_SEC = 300.0

# ── Task registry ─────────────────────────────────────────────────────
TASK_TTL_SEC = 60 * 60
CALLER_WAIT_BUDGET_SEC = 360.0

# ── HTTP server ───────────────────────────────────────────────────────
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
HTTP_TIMEOUT_SEC = 30
