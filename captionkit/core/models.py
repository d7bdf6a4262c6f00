"""
Data models (plain dataclasses) for DouyinCaptionExtractor.
to_dict() renders the camelCase wire shape used by the HTTP API.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from captionkit.core.constants import TaskStatus, TaskStage, TERMINAL_STATUSES
from captionkit.core.cancellation import CancelToken


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AntiBotSession:
    cookie_header: str
    expires_at: float                # epoch seconds

    def is_valid(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


@dataclass(frozen=True)
class ResolvedLink:
    extracted_url: str
    resolved_url: str
    kind: str                        # LinkKind
    video_id: Optional[str] = None
    account_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "extractedUrl": self.extracted_url,
            "resolvedUrl": self.resolved_url,
            "kind": self.kind,
            "videoId": self.video_id,
            "accountId": self.account_id,
        }


@dataclass
class Author:
    name: str = ""
    account_id: Optional[str] = None
    unique_id: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass
class VideoStats:
    likes: Optional[int] = None
    comments: Optional[int] = None
    shares: Optional[int] = None
    collects: Optional[int] = None


@dataclass
class VideoMetadata:
    id: str
    description: str = ""
    created_at: Optional[int] = None
    duration_ms: Optional[int] = None
    cover_url: Optional[str] = None
    author: Author = field(default_factory=Author)
    stats: VideoStats = field(default_factory=VideoStats)
    caption: Optional[str] = None
    media_url: Optional[str] = None

    @property
    def has_caption(self) -> bool:
        return bool(self.caption and self.caption.strip())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "createdAt": self.created_at,
            "durationMs": self.duration_ms,
            "coverUrl": self.cover_url,
            "author": {
                "name": self.author.name,
                "accountId": self.author.account_id,
                "uniqueId": self.author.unique_id,
                "avatarUrl": self.author.avatar_url,
            },
            "stats": {
                "likes": self.stats.likes,
                "comments": self.stats.comments,
                "shares": self.stats.shares,
                "collects": self.stats.collects,
            },
            "caption": self.caption,
            "mediaUrl": self.media_url,
        }


@dataclass
class AccountStats:
    followers: str = "-"
    following: str = "-"
    likes: str = "-"
    post_count: str = "-"


@dataclass
class AccountMetadata:
    account_id: str
    nickname: str = ""
    bio: str = ""
    unique_id: Optional[str] = None
    avatar_url: Optional[str] = None
    stats: AccountStats = field(default_factory=AccountStats)
    raw_followers: Optional[int] = None
    raw_likes: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "accountId": self.account_id,
            "nickname": self.nickname,
            "bio": self.bio,
            "uniqueId": self.unique_id,
            "avatarUrl": self.avatar_url,
            "stats": {
                "followers": self.stats.followers,
                "following": self.stats.following,
                "likes": self.stats.likes,
                "postCount": self.stats.post_count,
            },
            "raw": {
                "followers": self.raw_followers,
                "likes": self.raw_likes,
            },
        }


@dataclass
class LinkTestResult:
    link: ResolvedLink
    ok: bool = False
    message: str = "链接测试失败"
    has_caption: Optional[bool] = None
    media_probe_ok: Optional[bool] = None
    media_probe_status: Optional[int] = None
    media_probe_method: Optional[str] = None

    def to_dict(self) -> dict:
        data = self.link.to_dict()
        data.update({"ok": self.ok, "message": self.message})
        if self.has_caption is not None:
            data["hasCaption"] = self.has_caption
        if self.media_probe_ok is not None:
            data["mediaProbeOk"] = self.media_probe_ok
            data["mediaProbeStatus"] = self.media_probe_status
            data["mediaProbeMethod"] = self.media_probe_method
        return data


@dataclass(frozen=True)
class TaskSnapshot:
    task_id: str
    status: str
    stage: str
    message: str
    created_at: int
    updated_at: int
    transcript: Optional[str] = None
    error: Optional[str] = None
    temp_storage_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        data = {
            "taskId": self.task_id,
            "status": self.status,
            "stage": self.stage,
            "message": self.message,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.transcript is not None:
            data["transcript"] = self.transcript
        if self.error is not None:
            data["error"] = self.error
        if self.temp_storage_url is not None:
            data["tempStorageUrl"] = self.temp_storage_url
        return data


@dataclass
class TranscriptionTask:
    id: str                          # UUID
    status: str = TaskStatus.WAITING
    stage: str = TaskStage.QUEUED
    message: str = ""
    transcript: Optional[str] = None
    error: Optional[str] = None
    temp_storage_url: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    cancel_token: CancelToken = field(default_factory=CancelToken, repr=False, compare=False)
    job: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            task_id=self.id,
            status=self.status,
            stage=self.stage,
            message=self.message,
            created_at=self.created_at,
            updated_at=self.updated_at,
            transcript=self.transcript,
            error=self.error,
            temp_storage_url=self.temp_storage_url,
        )


@dataclass
class AsrResult:
    transcript: str
    temp_storage_url: Optional[str] = None


@dataclass
class AsrCredentials:
    app_key: str = ""                # flash: X-Api-App-Key
    access_key: str = ""             # flash: X-Api-Access-Key
    resource_id: str = ""            # flash: X-Api-Resource-Id (optional)
    api_key: str = ""                # upload-and-poll: bearer key

    @classmethod
    def from_dict(cls, data: dict | None) -> "AsrCredentials":
        data = data or {}

        def pick(*names):
            for name in names:
                value = data.get(name)
                if value:
                    return str(value).strip()
            return ""

        return cls(
            app_key=pick("appKey", "appId", "doubaoAppId", "doubaoAppKey"),
            access_key=pick("accessKey", "token", "doubaoToken", "doubaoAccessKey"),
            resource_id=pick("resourceId"),
            api_key=pick("apiKey", "dashscopeApiKey"),
        )

    @property
    def has_flash(self) -> bool:
        return bool(self.app_key or self.access_key)


@dataclass
class AccountVideos:
    account_id: Optional[str] = None
    videos: list[VideoMetadata] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "videos": [v.to_dict() for v in self.videos],
            "accountId": self.account_id,
        }
