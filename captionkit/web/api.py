"""
HTTP API (FastAPI) over CaptionService.
Every error body is {"error": message}.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from captionkit.core.constants import APP_NAME, APP_VERSION, ErrorCode, LIST_DEFAULT_COUNT
from captionkit.core.error_codes import (
    CaptionError, LinkError, CredentialsError, TaskNotFoundError,
)
from captionkit.core.service import CaptionService

logger = logging.getLogger(__name__)

_BAD_REQUEST_CODES = {ErrorCode.INVALID_LINK, ErrorCode.UNSAFE_LINK, ErrorCode.MISSING_CREDENTIALS}


def status_for(error: CaptionError) -> int:
    if isinstance(error, TaskNotFoundError):
        return 404
    if isinstance(error, (LinkError, CredentialsError)) or error.code in _BAD_REQUEST_CODES:
        return 400
    return 500


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _credentials_from(body: dict) -> dict:
    """Nested `credentials` object, else the flat legacy keys of the request body."""
    nested = body.get("credentials")
    if isinstance(nested, dict):
        return nested
    return body


def create_app(service: CaptionService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.aclose()

    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(CaptionError)
    async def caption_error_handler(request: Request, exc: CaptionError):
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(status, exc.message)

    # ── Resolution / metadata ─────────────────────────────────────────

    @app.get("/api/resolve")
    async def resolve(input: str = "", text: str = "", url: str = ""):
        link = await service.resolve(input or text or url)
        return link.to_dict()

    @app.get("/api/link/test")
    async def link_test(input: str = "", text: str = "", url: str = ""):
        result = await service.link_test(input or text or url)
        return result.to_dict()

    @app.get("/api/douyin/video")
    async def video(url: str = ""):
        if not url.strip():
            return _error(400, "缺少 url 参数")
        meta = await service.get_video(url)
        return meta.to_dict()

    @app.get("/api/douyin/user")
    async def user(url: str = ""):
        if not url.strip():
            return _error(400, "缺少 url 参数")
        meta = await service.get_account(url)
        return meta.to_dict()

    @app.get("/api/douyin/user/videos")
    async def user_videos(url: str = "", count: str = str(LIST_DEFAULT_COUNT)):
        result = await service.get_account_videos(url, count)
        return result.to_dict()

    # ── Caption tasks ─────────────────────────────────────────────────

    @app.post("/api/caption/create")
    async def caption_create(request: Request):
        body = await _json_body(request)
        work_url = str(body.get("workUrl") or body.get("url") or "").strip()
        if not work_url:
            return _error(400, "缺少 workUrl")
        provider = str(body.get("provider") or body.get("asrProvider") or "").strip() or None
        snapshot = await service.create_caption(work_url, provider, _credentials_from(body))
        return snapshot.to_dict()

    @app.get("/api/caption/query")
    async def caption_query(taskId: str = ""):
        if not taskId.strip():
            return _error(400, "缺少 taskId")
        return service.query_caption(taskId).to_dict()

    @app.post("/api/caption/cancel")
    async def caption_cancel(request: Request, taskId: str = ""):
        if not taskId.strip():
            body = await _json_body(request)
            taskId = str(body.get("taskId") or "").strip()
        if not taskId:
            return _error(400, "缺少 taskId")
        return service.cancel_caption(taskId).to_dict()

    # ── Diagnostics ───────────────────────────────────────────────────

    @app.get("/api/diagnostics")
    async def diagnostics():
        return await service.get_diagnostics()

    return app
