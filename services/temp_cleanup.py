"""
services/temp_cleanup.py
Empty the Temp/ folder once the combined report has been produced.

Every entry inside Temp/ is removed; the folder itself is kept so the next
suite run can write into it.
"""
import logging
import shutil
from pathlib import Path
from typing import Dict, Optional

from utils.config import load_report_settings

logger = logging.getLogger(__name__)


def cleanup_temp(project_root: Optional[str] = None, settings: Optional[Dict] = None) -> Dict:
    """
    Remove every file and folder inside <project_root>/Temp.

    A missing or already-empty Temp folder is a no-op. A failure on one
    entry is logged and the remaining entries are still removed.

    Returns:
        dict with temp_root, status, removed (paths) and failed (path + error).
    """
    if settings is None or project_root:
        settings = load_report_settings(project_root=project_root)
    temp_root = Path(settings["temp_root"])
    logger.info("Project root: %s", settings["project_root"])

    result = {"temp_root": str(temp_root), "removed": [], "failed": []}

    if not temp_root.is_dir():
        logger.warning("Temp does not exist: %s", temp_root)
        result["status"] = "MISSING"
        return result

    entries = sorted(temp_root.iterdir())
    if not entries:
        logger.info("Temp is already empty: %s", temp_root)
        result["status"] = "EMPTY"
        return result

    for entry in entries:
        try:
            if entry.is_dir() and not entry.is_symlink():
                logger.info("Delete dir: %s", entry)
                shutil.rmtree(entry)
            else:
                logger.info("Delete file: %s", entry)
                entry.unlink()
            result["removed"].append(str(entry))
        except OSError as e:
            logger.error("Failed to remove: %s (%s)", entry, e)
            result["failed"].append({"path": str(entry), "error": str(e)})

    logger.info("Temp cleaned: %s", temp_root)
    result["status"] = "CLEANED" if not result["failed"] else "PARTIAL"
    return result
