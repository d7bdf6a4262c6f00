"""
Standardised error handling for DouyinCaptionExtractor.
"""

from captionkit.core.constants import ErrorCode, CANCELLED_MESSAGE, ERROR_TAIL_CHARS


class CaptionError(Exception):
    """Raised when the pipeline encounters a known error condition."""

    default_code = ErrorCode.METADATA_FAILED

    def __init__(self, message: str, code: str | None = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class LinkError(CaptionError):
    default_code = ErrorCode.INVALID_LINK


class ResolutionError(CaptionError):
    default_code = ErrorCode.RESOLUTION_FAILED


class MetadataError(CaptionError):
    default_code = ErrorCode.METADATA_FAILED


class SessionError(CaptionError):
    default_code = ErrorCode.SESSION_FAILED


class SignatureError(CaptionError):
    default_code = ErrorCode.SIGNATURE_FAILED


class DownloadError(CaptionError):
    default_code = ErrorCode.DOWNLOAD_FAILED


class TranscodeError(CaptionError):
    default_code = ErrorCode.TRANSCODE_FAILED

    def __init__(self, message: str, stderr_tail: str = "", code: str | None = None):
        self.stderr_tail = stderr_tail
        super().__init__(message, code)


class ASRError(CaptionError):
    default_code = ErrorCode.ASR_FAILED


class CredentialsError(CaptionError):
    default_code = ErrorCode.MISSING_CREDENTIALS


class TaskNotFoundError(CaptionError):
    default_code = ErrorCode.TASK_NOT_FOUND


class CancellationError(CaptionError):
    """Cooperative cancellation; never reported as a generic failure."""

    default_code = ErrorCode.CANCELLED

    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


def tail_text(text: str, max_chars: int = ERROR_TAIL_CHARS) -> str:
    """Keep only the last max_chars characters of upstream diagnostic text."""
    s = str(text or "")
    if len(s) <= max_chars:
        return s
    return s[-max_chars:]
