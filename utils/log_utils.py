"""
log_utils.py

Logging setup for the API report stages.

Every stage logs one line per major action (start, per-file outcome,
completion) so an operator tailing the output can follow a run. Levels and
destinations come from the 'logging' section of config.yaml.
"""

import logging
import os
from typing import Dict, Optional

CONCISE_FORMAT = "[%(levelname)s] %(message)s"
VERBOSE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"
LOG_FILE_NAME = "apireport.log"


def setup_logging(config: Optional[Dict] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger from the 'logging' config section.

    Args:
        config: Loaded configuration dict (may be None).
        level: Optional level name that overrides log_level from config.

    Returns:
        The configured root logger.
    """
    log_cfg = (config or {}).get("logging") or {}
    level_name = (level or log_cfg.get("log_level") or "INFO").upper()
    verbose = bool(log_cfg.get("verbose_mode", False))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Replace handlers from a previous setup so repeated calls don't duplicate lines
    for handler in list(root.handlers):
        if getattr(handler, "_apireport", False):
            root.removeHandler(handler)

    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else CONCISE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._apireport = True
    root.addHandler(console)

    log_path = log_cfg.get("log_path")
    if log_path:
        os.makedirs(log_path, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_path, LOG_FILE_NAME), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT))
        file_handler._apireport = True
        root.addHandler(file_handler)

    return root
