"""
Transcription task manager.
Owns the in-memory task registry and runs one detached asyncio job per task.

Status: WAITING -> RUNNING -> {SUCCESS, FAILURE, CANCELLED}; terminal states
are absorbing. Stage only moves forward within a run. Only the owning job
mutates a task, except cancel(), which finalises it immediately.
"""

import asyncio
import logging
import uuid
from typing import Callable

from captionkit.core.constants import (
    TaskStatus, TaskStage, STAGE_ORDER, ErrorCode, CANCELLED_MESSAGE, TASK_TTL_SEC,
)
from captionkit.core.error_codes import (
    CaptionError, CancellationError, LinkError, MetadataError, TaskNotFoundError,
    CredentialsError,
)
from captionkit.core.metadata import MetadataFetcher
from captionkit.core.models import (
    TranscriptionTask, TaskSnapshot, AsrCredentials, now_ms,
)
from captionkit.core.resolver import LinkResolver
from captionkit.core.transcribe_base import AsrAdapter, resolve_provider
from captionkit.core.url_parse import parse_video_id

logger = logging.getLogger(__name__)

MSG_CREATED = "任务已创建"
MSG_CAPTION_REUSED = "已获取抖音字幕"
MSG_DONE = "提取完成"
MSG_FAILED = "提取失败"
MSG_CANCELLED = "已取消"


class TranscriptionTaskManager:
    """
    Creates, tracks and cancels transcription tasks.
    create/query/cancel touch the registry without awaiting in between,
    so no lock is needed on a single event loop.
    """

    def __init__(self, resolver: LinkResolver, fetcher: MetadataFetcher,
                 adapters: dict[str, AsrAdapter],
                 ttl_sec: float = TASK_TTL_SEC,
                 clock: Callable[[], int] = now_ms):
        self.resolver = resolver
        self.fetcher = fetcher
        self.adapters = adapters
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._tasks: dict[str, TranscriptionTask] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    # ── Registry ──────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Drop terminal tasks idle for longer than the TTL; returns the number removed."""
        cutoff = self._clock() - int(self.ttl_sec * 1000)
        expired = [
            task_id for task_id, task in self._tasks.items()
            if task.is_terminal and task.updated_at < cutoff
        ]
        for task_id in expired:
            del self._tasks[task_id]
        if expired:
            logger.info("Swept %d expired task(s)", len(expired))
        return len(expired)

    def _get(self, task_id: str) -> TranscriptionTask:
        task = self._tasks.get((task_id or "").strip())
        if task is None:
            raise TaskNotFoundError("任务不存在或已过期")
        return task

    def _new_task(self, **fields) -> TranscriptionTask:
        ts = self._clock()
        task = TranscriptionTask(id=str(uuid.uuid4()), created_at=ts, updated_at=ts, **fields)
        self._tasks[task.id] = task
        return task

    # ── State transitions ─────────────────────────────────────────────

    def _advance(self, task: TranscriptionTask, stage: str, message: str):
        """Progress update from the adapter; ignored once terminal or if it would move backwards."""
        if task.is_terminal:
            return
        if STAGE_ORDER.get(stage, 0) < STAGE_ORDER.get(task.stage, 0):
            return
        task.status = TaskStatus.RUNNING
        task.stage = stage
        task.message = message
        task.updated_at = self._clock()
        logger.info("Task %s: %s", task.id, stage)

    def _finish(self, task: TranscriptionTask, status: str, stage: str, message: str, **fields):
        if task.is_terminal:
            return
        task.status = status
        task.stage = stage
        task.message = message
        for key, value in fields.items():
            setattr(task, key, value)
        task.updated_at = self._clock()
        logger.info("Task %s finished: %s", task.id, status)

    def _mark_cancelled(self, task: TranscriptionTask):
        self._finish(task, TaskStatus.CANCELLED, TaskStage.CANCELLED, MSG_CANCELLED,
                     error=CANCELLED_MESSAGE)

    # ── Public API ────────────────────────────────────────────────────

    async def create(self, work_url: str, provider: str | None = None,
                     credentials: AsrCredentials | dict | None = None) -> TaskSnapshot:
        """
        Resolve the link and fetch metadata now; run ASR in the background.
        Validation and metadata errors raise here and never become tasks.
        """
        self.sweep()

        work_url = (work_url or "").strip()
        if not work_url:
            raise LinkError("缺少 workUrl")

        if not isinstance(credentials, AsrCredentials):
            credentials = AsrCredentials.from_dict(credentials)
        provider = resolve_provider(provider, credentials)
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise CredentialsError(f"不支持的语音识别服务：{provider}")
        adapter.check_credentials(credentials)

        link = await self.resolver.resolve(work_url)
        video_id = link.video_id or parse_video_id(link.resolved_url)
        if not video_id:
            raise LinkError("无法识别视频 ID")

        meta = await self.fetcher.fetch_video(video_id)

        if meta.has_caption:
            task = self._new_task(
                status=TaskStatus.SUCCESS,
                stage=TaskStage.DONE,
                message=MSG_CAPTION_REUSED,
                transcript=meta.caption.strip(),
            )
            logger.info("Task %s reused the platform caption", task.id)
            return task.snapshot()

        if not meta.media_url:
            raise MetadataError("无法获取视频播放地址，可能权限受限或视频不可用",
                                ErrorCode.MEDIA_URL_MISSING)

        task = self._new_task(message=MSG_CREATED)
        task.job = asyncio.create_task(self._run(task, adapter, meta.media_url, credentials))
        logger.info("Task %s created (provider %s)", task.id, provider)
        return task.snapshot()

    def query(self, task_id: str) -> TaskSnapshot:
        self.sweep()
        return self._get(task_id).snapshot()

    def cancel(self, task_id: str) -> TaskSnapshot:
        """Cancel a non-terminal task; on a terminal task this is a no-op."""
        self.sweep()
        task = self._get(task_id)
        if not task.is_terminal:
            task.cancel_token.cancel()
            self._mark_cancelled(task)
        return task.snapshot()

    async def aclose(self):
        """Cancel every running job and wait for them to unwind."""
        jobs = []
        for task in self._tasks.values():
            if not task.is_terminal:
                task.cancel_token.cancel()
                self._mark_cancelled(task)
            if task.job is not None and not task.job.done():
                jobs.append(task.job)
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)

    # ── Background job ────────────────────────────────────────────────

    async def _run(self, task: TranscriptionTask, adapter: AsrAdapter,
                   media_url: str, credentials: AsrCredentials):
        token = task.cancel_token
        try:
            result = await adapter.transcribe(
                media_url, credentials, token,
                lambda stage, message: self._advance(task, stage, message),
            )
        except CancellationError:
            self._mark_cancelled(task)
        except asyncio.CancelledError:
            self._mark_cancelled(task)
            raise
        except CaptionError as e:
            if token.cancelled:
                self._mark_cancelled(task)
            else:
                logger.warning("Task %s failed: %s", task.id, e)
                self._finish(task, TaskStatus.FAILURE, TaskStage.FAILED, MSG_FAILED,
                             error=e.message)
        except Exception as e:
            logger.error("Task %s crashed: %s", task.id, e, exc_info=True)
            self._finish(task, TaskStatus.FAILURE, TaskStage.FAILED, MSG_FAILED,
                         error=str(e) or MSG_FAILED)
        else:
            if token.cancelled:
                self._mark_cancelled(task)
                return
            self._finish(task, TaskStatus.SUCCESS, TaskStage.DONE, MSG_DONE,
                         transcript=result.transcript,
                         temp_storage_url=result.temp_storage_url)
