"""
Upload-and-poll recognizer (DashScope Paraformer, asynchronous job).

  1. GET an upload policy for the model
  2. multipart POST of the raw video to the provider's temporary object storage
  3. submit a transcription job for oss://<key> with async execution enabled
  4. poll the job every POLL_INTERVAL_SEC up to POLL_MAX_WAIT_SEC
  5. fetch the result document and join the per-segment texts
"""

import logging
import time

import httpx

from captionkit.core.cancellation import CancelToken
from captionkit.core.constants import (
    Provider, ErrorCode, TaskStage, DASHSCOPE_API_BASE, DASHSCOPE_MODEL,
    DASHSCOPE_LANGUAGE_HINTS, POLL_INTERVAL_SEC, POLL_MAX_WAIT_SEC, MAX_MEDIA_BYTES,
)
from captionkit.core.download_media import download_media
from captionkit.core.error_codes import ASRError, LinkError, tail_text
from captionkit.core.models import AsrCredentials, AsrResult
from captionkit.core.net import json_or_none
from captionkit.core.security_utils import assert_safe_url
from captionkit.core.transcribe_base import AsrAdapter, StageCallback, no_stage, require

logger = logging.getLogger(__name__)

_POLICY_FIELDS = ("upload_dir", "upload_host")
_FAILED_STATUSES = ("FAILED", "CANCELED", "UNKNOWN")


def _provider_error(data, fallback: str) -> str | None:
    """Message for a provider JSON body carrying a non-empty `code`, else None."""
    if isinstance(data, dict) and data.get("code"):
        return str(data.get("message") or fallback)
    return None


class UploadPollAdapter(AsrAdapter):

    provider = Provider.UPLOAD_POLL

    def __init__(self, client: httpx.AsyncClient,
                 api_base: str = DASHSCOPE_API_BASE,
                 model: str = DASHSCOPE_MODEL,
                 poll_interval: float = POLL_INTERVAL_SEC,
                 max_wait: float = POLL_MAX_WAIT_SEC,
                 max_media_bytes: int = MAX_MEDIA_BYTES,
                 clock=time.monotonic):
        super().__init__(client, max_media_bytes)
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._clock = clock

    def check_credentials(self, credentials: AsrCredentials):
        require(credentials.api_key, "缺少 dashscopeApiKey（阿里百炼）")

    # ── Upload ────────────────────────────────────────────────────────

    async def _get_upload_policy(self, api_key: str, token: CancelToken) -> dict:
        resp = await self._guarded(token, self.client.get(
            f"{self.api_base}/uploads",
            params={"action": "getPolicy", "model": self.model},
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        ), "获取上传凭证失败")

        data = json_or_none(resp)
        if not resp.is_success or _provider_error(data, ""):
            message = data.get("message") if isinstance(data, dict) else None
            raise ASRError(message or f"获取上传凭证失败 (HTTP {resp.status_code})")

        policy = data.get("data") if isinstance(data, dict) else None
        if not isinstance(policy, dict) or not all(policy.get(k) for k in _POLICY_FIELDS):
            raise ASRError("获取上传凭证失败：返回数据不完整")
        return policy

    async def upload_temporary(self, content: bytes, filename: str, content_type: str,
                               api_key: str, token: CancelToken) -> str:
        """Upload to the provider's temporary storage; returns the oss:// URL."""
        policy = await self._get_upload_policy(api_key, token)
        key = f"{policy['upload_dir']}/{filename}"

        try:
            assert_safe_url(policy["upload_host"])
        except LinkError as e:
            raise ASRError(f"上传地址不安全：{e.message}")

        form = {
            "OSSAccessKeyId": str(policy.get("oss_access_key_id", "")),
            "Signature": str(policy.get("signature", "")),
            "policy": str(policy.get("policy", "")),
            "x-oss-object-acl": str(policy.get("x_oss_object_acl", "")),
            "x-oss-forbid-overwrite": str(policy.get("x_oss_forbid_overwrite", "")),
            "key": key,
            "success_action_status": "200",
        }
        resp = await self._guarded(token, self.client.post(
            policy["upload_host"],
            data=form,
            files={"file": (filename, content, content_type)},
        ), "上传临时文件失败")

        if not resp.is_success:
            detail = tail_text(resp.text) if resp.text else ""
            message = f"上传临时文件失败 (HTTP {resp.status_code})"
            raise ASRError(f"{message}：{detail}" if detail else message)

        return f"oss://{key}"

    # ── Job ───────────────────────────────────────────────────────────

    async def _submit(self, file_url: str, api_key: str, token: CancelToken) -> str:
        resp = await self._guarded(token, self.client.post(
            f"{self.api_base}/services/audio/asr/transcription",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "X-DashScope-Async": "enable",
                "X-DashScope-OssResourceResolve": "enable",
            },
            json={
                "model": self.model,
                "input": {"file_urls": [file_url]},
                "parameters": {"language_hints": DASHSCOPE_LANGUAGE_HINTS},
            },
        ), "提交转录任务失败")

        data = json_or_none(resp)
        if not resp.is_success or _provider_error(data, "") or data is None:
            message = data.get("message") if isinstance(data, dict) else None
            raise ASRError(message or "提交转录任务失败")

        job_id = (data.get("output") or {}).get("task_id")
        if not job_id:
            raise ASRError("未获取到转录任务ID")
        logger.info("Submitted transcription job %s", job_id)
        return str(job_id)

    async def _poll(self, job_id: str, api_key: str, token: CancelToken) -> str:
        """Poll until the job succeeds; returns its transcription_url."""
        deadline = self._clock() + self.max_wait
        while self._clock() < deadline:
            await token.sleep(self.poll_interval)

            resp = await self._guarded(token, self.client.get(
                f"{self.api_base}/tasks/{job_id}",
                headers={"Authorization": f"Bearer {api_key}"},
            ), "查询任务状态失败")
            data = json_or_none(resp)

            error = _provider_error(data, "查询任务状态失败")
            if error:
                raise ASRError(error)
            if not isinstance(data, dict):
                raise ASRError("查询任务状态失败")

            output = data.get("output") or {}
            status = output.get("task_status")
            logger.debug("Transcription job %s status: %s", job_id, status)

            if status == "SUCCEEDED":
                results = output.get("results") or [{}]
                url = (results[0] or {}).get("transcription_url")
                if not url:
                    raise ASRError("未获取到转录结果 URL")
                return url

            if status in _FAILED_STATUSES:
                raise ASRError(data.get("message") or output.get("message") or "转录任务失败")

        raise ASRError("转录超时，请稍后重试", ErrorCode.ASR_TIMEOUT)

    async def _fetch_result(self, url: str, token: CancelToken) -> str:
        try:
            assert_safe_url(url)
        except LinkError as e:
            raise ASRError(f"转录结果地址不安全：{e.message}")

        resp = await self._guarded(token, self.client.get(url), "获取转录结果失败")
        if not resp.is_success:
            raise ASRError("获取转录结果失败")

        data = json_or_none(resp)
        transcripts = data.get("transcripts") if isinstance(data, dict) else None
        texts = [str(t.get("text")) for t in transcripts or [] if isinstance(t, dict) and t.get("text")]
        if not texts:
            raise ASRError("转录结果为空", ErrorCode.ASR_EMPTY)
        return "\n".join(texts)

    async def transcribe(self, media_url: str, credentials: AsrCredentials,
                         token: CancelToken,
                         on_stage: StageCallback = no_stage) -> AsrResult:
        self.check_credentials(credentials)
        api_key = credentials.api_key

        on_stage(TaskStage.DOWNLOADING, "下载视频中...")
        media = await download_media(self.client, media_url, token, self.max_media_bytes)

        on_stage(TaskStage.UPLOADING, "上传临时文件中...")
        file_url = await self.upload_temporary(media, "video.mp4", "video/mp4", api_key, token)

        on_stage(TaskStage.SUBMITTING, "提交语音识别任务中...")
        job_id = await self._submit(file_url, api_key, token)

        on_stage(TaskStage.POLLING, "语音识别中...")
        result_url = await self._poll(job_id, api_key, token)

        on_stage(TaskStage.FETCHING_RESULT, "获取转录结果中...")
        transcript = await self._fetch_result(result_url, token)
        return AsrResult(transcript=transcript, temp_storage_url=file_url)
