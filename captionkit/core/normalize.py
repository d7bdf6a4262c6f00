"""
Audio extraction using ffmpeg.
Target: video stripped, mono, 16kHz, MP3 CBR 64kbps.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from captionkit.core.cancellation import CancelToken
from captionkit.core.cleanup import remove_temp_dir
from captionkit.core.constants import (
    DEFAULT_FFMPEG_PATH, TEMP_DIR_PREFIX, NORM_CHANNELS, NORM_SAMPLE_RATE,
    NORM_BITRATE, NORM_FORMAT, STDERR_BUFFER_CHARS, ERROR_TAIL_CHARS,
)
from captionkit.core.error_codes import TranscodeError, CancellationError, tail_text
from captionkit.core.security_utils import spawn_subprocess

logger = logging.getLogger(__name__)


def build_ffmpeg_args(ffmpeg_path: str, input_path: Path, output_path: Path) -> list[str]:
    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel", "error",
        "-y",                           # overwrite
        "-i", str(input_path),
        "-vn",                          # drop video
        "-ac", str(NORM_CHANNELS),      # mono
        "-ar", str(NORM_SAMPLE_RATE),   # 16kHz
        "-b:a", NORM_BITRATE,           # 64k CBR
        str(output_path),
    ]


async def _drain_stderr(stream: asyncio.StreamReader) -> str:
    """Read stderr to EOF keeping only the last STDERR_BUFFER_CHARS characters."""
    buffer = ""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return buffer
        buffer = (buffer + chunk.decode('utf-8', errors='replace'))[-STDERR_BUFFER_CHARS:]


class AudioExtractor:
    """Turns a downloaded media buffer into compact speech audio bytes."""

    def __init__(self, ffmpeg_path: str = DEFAULT_FFMPEG_PATH):
        self.ffmpeg_path = ffmpeg_path or DEFAULT_FFMPEG_PATH

    async def extract(self, media: bytes, token: CancelToken) -> bytes:
        """
        Transcode media bytes to mono 16kHz MP3.
        The temporary directory is removed on success, failure and cancellation.
        """
        token.raise_if_cancelled()
        workspace = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX))
        try:
            input_path = workspace / "input.mp4"
            output_path = workspace / f"audio.{NORM_FORMAT}"
            input_path.write_bytes(media)

            await self._run_ffmpeg(input_path, output_path, token)

            if not output_path.exists():
                raise TranscodeError("音频文件未生成")
            audio = output_path.read_bytes()
            if not audio:
                raise TranscodeError("音频文件为空")
            logger.info("Extracted audio (%d bytes)", len(audio))
            return audio
        finally:
            remove_temp_dir(workspace)

    async def _run_ffmpeg(self, input_path: Path, output_path: Path, token: CancelToken):
        args = build_ffmpeg_args(self.ffmpeg_path, input_path, output_path)
        try:
            proc = await spawn_subprocess(
                args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"无法启动 ffmpeg：{e.strerror or e}")

        def kill():
            if proc.returncode is None:
                logger.info("Killing ffmpeg (pid %s) on cancel", proc.pid)
                proc.kill()

        remove_callback = token.add_callback(kill)
        try:
            stderr = await _drain_stderr(proc.stderr)
            returncode = await proc.wait()
        finally:
            remove_callback()
            if proc.returncode is None:
                proc.kill()

        if token.cancelled:
            raise CancellationError()

        if returncode != 0:
            excerpt = tail_text(stderr.strip(), ERROR_TAIL_CHARS)
            logger.warning("ffmpeg failed (rc=%s)", returncode)
            message = f"ffmpeg 转码失败 (rc={returncode})"
            if excerpt:
                message = f"{message}：{excerpt}"
            raise TranscodeError(message, stderr_tail=excerpt)
