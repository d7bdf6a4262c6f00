"""
Common interface for speech-recognition providers.

Each adapter turns a playable media URL into an AsrResult, reporting coarse
stage transitions to its owner and reacting to the task's CancelToken at
every suspension point. Provider quirks stay inside the adapter.
"""

import logging
from typing import Callable

import httpx

from captionkit.core.cancellation import CancelToken
from captionkit.core.constants import Provider, PROVIDER_ALIASES, MAX_MEDIA_BYTES
from captionkit.core.error_codes import CredentialsError, ASRError
from captionkit.core.models import AsrCredentials, AsrResult

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, str], None]


def no_stage(stage: str, message: str):
    pass


def resolve_provider(name: str | None, credentials: AsrCredentials) -> str:
    """
    Map a provider name or alias to a Provider value.
    Without a name, flash wins when flash credentials are present;
    an unknown name raises CredentialsError.
    """
    key = (name or "").strip().lower()
    if not key:
        return Provider.FLASH if credentials.has_flash else Provider.UPLOAD_POLL
    if key not in PROVIDER_ALIASES:
        raise CredentialsError(f"不支持的语音识别服务：{name}")
    return PROVIDER_ALIASES[key]


class AsrAdapter:
    """Base class; subclasses set `provider` and implement transcribe()."""

    provider = ""

    def __init__(self, client: httpx.AsyncClient, max_media_bytes: int = MAX_MEDIA_BYTES):
        self.client = client
        self.max_media_bytes = max_media_bytes

    def check_credentials(self, credentials: AsrCredentials):
        """Raise CredentialsError when required keys are missing."""
        raise NotImplementedError

    async def transcribe(self, media_url: str, credentials: AsrCredentials,
                         token: CancelToken,
                         on_stage: StageCallback = no_stage) -> AsrResult:
        raise NotImplementedError

    async def _guarded(self, token: CancelToken, awaitable, failure: str):
        """Await an HTTP call under the cancel token, mapping transport errors to ASRError."""
        try:
            return await token.guard(awaitable)
        except httpx.HTTPError as e:
            raise ASRError(f"{failure}：{type(e).__name__}")


def require(value: str, message: str):
    if not value:
        raise CredentialsError(message)
