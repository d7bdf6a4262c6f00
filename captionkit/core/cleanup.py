"""
Cleanup: delete per-run temporary directories.
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def remove_temp_dir(workspace: Path | None):
    """Remove a transcoding workspace; failures are logged, never raised."""
    if workspace is None or not workspace.exists():
        return
    try:
        shutil.rmtree(workspace)
        logger.debug("Deleted: %s", workspace)
    except OSError as e:
        logger.warning("Failed to delete %s: %s", workspace, e)
