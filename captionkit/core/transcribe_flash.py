"""
Flash recognizer (Doubao big-model, single synchronous request).

The audio is sent inline as base64. Success is decided by the business
status in the X-Api-Status-Code response header, not by the HTTP status.
"""

import base64
import logging
import uuid

import httpx

from captionkit.core.cancellation import CancelToken
from captionkit.core.constants import (
    Provider, ErrorCode, FLASH_URL, FLASH_RESOURCE_ID, FLASH_SUCCESS_CODE,
    DEFAULT_FFMPEG_PATH, MAX_MEDIA_BYTES, TaskStage,
)
from captionkit.core.download_media import download_media
from captionkit.core.error_codes import ASRError, tail_text
from captionkit.core.models import AsrCredentials, AsrResult
from captionkit.core.net import json_or_none
from captionkit.core.normalize import AudioExtractor
from captionkit.core.transcribe_base import AsrAdapter, StageCallback, no_stage, require

logger = logging.getLogger(__name__)


def _business_status(resp: httpx.Response) -> int:
    raw = (resp.headers.get("x-api-status-code") or "").strip()
    try:
        return int(raw) if raw else 0
    except ValueError:
        return 0


def _logid_suffix(logid: str) -> str:
    return f"（logid={logid}）" if logid else ""


def parse_flash_response(resp: httpx.Response) -> str:
    """
    Extract the transcript from a flash response or raise ASRError.
    An HTTP 200 can still carry a failing business status.
    """
    status_code = resp.headers.get("x-api-status-code", "")
    status_message = resp.headers.get("x-api-message", "")
    logid = resp.headers.get("x-tt-logid", "")
    data = json_or_none(resp) if resp.content else None

    if not resp.is_success:
        extra = ", ".join(part for part in (
            f"X-Api-Status-Code={status_code}" if status_code else "",
            f"X-Api-Message={status_message}" if status_message else "",
            f"X-Tt-Logid={logid}" if logid else "",
        ) if part)
        message = f"豆包语音识别失败 (HTTP {resp.status_code})"
        if extra:
            message += f"：{extra}"
        if resp.text:
            message += f"\n{tail_text(resp.text)}"
        raise ASRError(message)

    status = _business_status(resp)
    if status and status != FLASH_SUCCESS_CODE:
        detail = status_message
        if not detail and isinstance(data, dict):
            detail = data.get("message") or data.get("error") or ""
        raise ASRError(f"{detail or '豆包语音识别失败'}{_logid_suffix(logid)}")

    result = data.get("result") if isinstance(data, dict) else None
    transcript = str((result or {}).get("text") or "").strip()
    if not transcript:
        raise ASRError(f"豆包语音识别完成，但返回文本为空{_logid_suffix(logid)}",
                       ErrorCode.ASR_EMPTY)
    return transcript


class FlashAdapter(AsrAdapter):
    """download -> ffmpeg -> one POST with inline base64 audio."""

    provider = Provider.FLASH

    def __init__(self, client: httpx.AsyncClient,
                 ffmpeg_path: str = DEFAULT_FFMPEG_PATH,
                 max_media_bytes: int = MAX_MEDIA_BYTES):
        super().__init__(client, max_media_bytes)
        self.extractor = AudioExtractor(ffmpeg_path)

    def check_credentials(self, credentials: AsrCredentials):
        require(credentials.app_key, "缺少 doubaoAppId（豆包语音 AppID）")
        require(credentials.access_key, "缺少 doubaoToken（豆包语音 Access Token）")

    async def transcribe(self, media_url: str, credentials: AsrCredentials,
                         token: CancelToken,
                         on_stage: StageCallback = no_stage) -> AsrResult:
        self.check_credentials(credentials)

        on_stage(TaskStage.DOWNLOADING, "下载视频中...")
        media = await download_media(self.client, media_url, token, self.max_media_bytes)

        on_stage(TaskStage.UPLOADING, "提取音频中...")
        audio = await self.extractor.extract(media, token)
        audio_b64 = base64.b64encode(audio).decode("ascii")

        on_stage(TaskStage.SUBMITTING, "提交豆包语音识别中...")
        request_id = str(uuid.uuid4())
        logger.info("Submitting flash recognition (request id %s)", request_id)
        resp = await self._guarded(token, self.client.post(
            FLASH_URL,
            headers={
                "Content-Type": "application/json",
                "X-Api-App-Key": credentials.app_key,
                "X-Api-Access-Key": credentials.access_key,
                "X-Api-Resource-Id": credentials.resource_id or FLASH_RESOURCE_ID,
                "X-Api-Request-Id": request_id,
                "X-Api-Sequence": "-1",
            },
            json={
                "user": {"uid": credentials.app_key},
                "audio": {"data": audio_b64},
                "request": {"model_name": "bigmodel"},
            },
        ), "豆包语音识别请求失败")

        token.raise_if_cancelled()
        return AsrResult(transcript=parse_flash_response(resp))
