"""
Diagnostics: tool version detection and runtime state checks.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from captionkit.core.constants import DEFAULT_FFMPEG_PATH, DEFAULT_SIGNER_SCRIPT, APP_VERSION
from captionkit.core.security_utils import run_subprocess_capture
from captionkit.core.session import SessionManager

logger = logging.getLogger(__name__)


async def get_ffmpeg_version(ffmpeg_path: str = DEFAULT_FFMPEG_PATH) -> str:
    """Return the ffmpeg version line, or an error message."""
    try:
        returncode, stdout, _ = await run_subprocess_capture([ffmpeg_path, "-version"], timeout=10)
        if returncode == 0:
            lines = stdout.strip().splitlines()
            return lines[0] if lines else "Unknown"
        return f"Error (rc={returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def check_signer_script(script_path: str | None) -> dict:
    """Report which listing signer script is in use and whether it is readable."""
    path = Path(script_path) if script_path else DEFAULT_SIGNER_SCRIPT
    info = {"configured": bool(script_path), "path": str(path),
            "readable": False, "last_modified": None}
    if path.is_file():
        info["readable"] = True
        info["last_modified"] = datetime.fromtimestamp(
            path.stat().st_mtime, tz=timezone.utc
        ).isoformat()
    return info


def session_state(sessions: SessionManager) -> dict:
    session = sessions.cached
    return {
        "cached": session is not None,
        "expiresAt": int(session.expires_at * 1000) if session else None,
    }


async def get_diagnostics(ffmpeg_path: str, script_path: str | None,
                          sessions: SessionManager) -> dict:
    """Gather all diagnostic information."""
    return {
        "version": APP_VERSION,
        "ffmpegVersion": await get_ffmpeg_version(ffmpeg_path),
        "signerScript": check_signer_script(script_path),
        "session": session_state(sessions),
    }
