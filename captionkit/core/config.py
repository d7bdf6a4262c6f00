"""
Application configuration manager.
Stores settings in a JSON file under the app support dir; CAPTIONKIT_<KEY>
environment variables override the file for the current process only.
"""

import json
import logging
import os
from pathlib import Path

from captionkit.core.constants import (
    CONFIG_PATH, DEFAULT_FFMPEG_PATH, MAX_MEDIA_BYTES, TASK_TTL_SEC,
    SIGNATURE_TIMEOUT_MS, DEFAULT_HOST, DEFAULT_PORT, HTTP_TIMEOUT_SEC,
)

# Validation bounds
_HTTP_TIMEOUT_MIN = 5
_HTTP_TIMEOUT_MAX = 300
_MEDIA_BYTES_MIN = 1024 * 1024
_MEDIA_BYTES_MAX = 2 * 1024 * 1024 * 1024
_TASK_TTL_MIN = 60
_TASK_TTL_MAX = 86400
_SIGNATURE_TIMEOUT_MIN = 100
_SIGNATURE_TIMEOUT_MAX = 30000
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

ENV_PREFIX = "CAPTIONKIT_"

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'ffmpeg_path': DEFAULT_FFMPEG_PATH,
    'signer_script_path': "",
    'http_timeout_sec': HTTP_TIMEOUT_SEC,
    'max_media_bytes': MAX_MEDIA_BYTES,
    'task_ttl_sec': TASK_TTL_SEC,
    'signature_timeout_ms': SIGNATURE_TIMEOUT_MS,
    'host': DEFAULT_HOST,
    'port': DEFAULT_PORT,
    'log_level': "INFO",
}


def _clamp_number(value, cast, lo, hi, default):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, value))


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = config_path or CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merge with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    if key in _DEFAULTS:
                        self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

        for key in _DEFAULTS:
            raw = self._environ.get(ENV_PREFIX + key.upper())
            if raw is not None:
                self._data[key] = self._validate(key, raw)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        default = _DEFAULTS.get(key)

        if key == 'http_timeout_sec':
            return _clamp_number(value, float, _HTTP_TIMEOUT_MIN, _HTTP_TIMEOUT_MAX, default)

        if key == 'max_media_bytes':
            return _clamp_number(value, int, _MEDIA_BYTES_MIN, _MEDIA_BYTES_MAX, default)

        if key == 'task_ttl_sec':
            return _clamp_number(value, float, _TASK_TTL_MIN, _TASK_TTL_MAX, default)

        if key == 'signature_timeout_ms':
            return _clamp_number(value, int, _SIGNATURE_TIMEOUT_MIN, _SIGNATURE_TIMEOUT_MAX, default)

        if key == 'port':
            return _clamp_number(value, int, 1, 65535, default)

        if key == 'log_level':
            level = str(value).upper()
            if level not in _LOG_LEVELS:
                logger.warning("Invalid log_level %r — using INFO", value)
                return "INFO"
            return level

        if key in ('ffmpeg_path', 'signer_script_path', 'host'):
            value = str(value or "").strip()
            return value or default

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def ffmpeg_path(self) -> str:
        return self._data.get('ffmpeg_path', DEFAULT_FFMPEG_PATH)

    @property
    def signer_script_path(self) -> str:
        return self._data.get('signer_script_path', "")

    @property
    def http_timeout_sec(self) -> float:
        return self._data.get('http_timeout_sec', HTTP_TIMEOUT_SEC)

    @property
    def max_media_bytes(self) -> int:
        return self._data.get('max_media_bytes', MAX_MEDIA_BYTES)

    @property
    def task_ttl_sec(self) -> float:
        return self._data.get('task_ttl_sec', TASK_TTL_SEC)

    @property
    def signature_timeout_ms(self) -> int:
        return self._data.get('signature_timeout_ms', SIGNATURE_TIMEOUT_MS)

    @property
    def log_level(self) -> str:
        return self._data.get('log_level', "INFO")
