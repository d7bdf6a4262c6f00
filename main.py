#!/usr/bin/env python3
"""
DouyinCaptionExtractor v1.0.0 — Main entry point.
Serves the caption API on a local port with uvicorn.
"""

import argparse
import logging
import shutil
import sys
import traceback
from datetime import datetime
from pathlib import Path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from captionkit.core.config import AppConfig
from captionkit.core.constants import APP_NAME, APP_VERSION, LOG_DIR

logger = logging.getLogger(APP_NAME)


def setup_logging(level: str):
    """Log to ~/.local/state/DouyinCaptionExtractor/logs/app.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "app.log"

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    # httpx logs every request URL at INFO, which would leak signed query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return log_file


def check_prerequisites(config: AppConfig):
    """Warn when ffmpeg is missing; caption-only lookups still work without it."""
    found = shutil.which(config.ffmpeg_path)
    if found:
        logger.info("ffmpeg found at: %s", found)
    else:
        logger.warning("ffmpeg not found (%s); speech recognition will fail until it is installed",
                       config.ffmpeg_path)

    if config.signer_script_path and not Path(config.signer_script_path).is_file():
        logger.warning("Signer script not readable: %s", config.signer_script_path)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Douyin caption extraction API")
    parser.add_argument("--host", help="bind address (default from config)")
    parser.add_argument("--port", type=int, help="listen port (default from config)")
    parser.add_argument("--config", type=Path, help="path to config.json")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = AppConfig(config_path=args.config)
    log_file = setup_logging(config.log_level)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Log file: %s", log_file)
    logger.info("=" * 60)

    try:
        check_prerequisites(config)

        import uvicorn
        from captionkit.core.service import CaptionService
        from captionkit.web.api import create_app

        app = create_app(CaptionService(config))
        uvicorn.run(
            app,
            host=args.host or config.get('host'),
            port=args.port or config.get('port'),
            log_config=None,
        )
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    main()
