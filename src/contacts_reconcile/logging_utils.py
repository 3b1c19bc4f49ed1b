from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "CONTACTS_RECONCILE_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
RUN_LOG_MARKER = "_contacts_reconcile_run_log"


def _resolve_level(level_name: str) -> int:
    """Numeric level for a case-insensitive name or number; unknown names map to INFO."""
    normalized = (level_name or "INFO").upper()
    if normalized.isdigit():
        return int(normalized)
    return getattr(logging, normalized, logging.INFO)


def _attach_run_log(root_logger: logging.Logger, path: Path, level: int) -> None:
    for handler in list(root_logger.handlers):
        if getattr(handler, RUN_LOG_MARKER, False):
            root_logger.removeHandler(handler)
            handler.close()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, RUN_LOG_MARKER, True)
    root_logger.addHandler(handler)


def configure_logging(config: PipelineConfig, level_override: Optional[str] = None) -> None:
    """
    Configure the root logger according to precedence:

    1. ``CONTACTS_RECONCILE_LOG_LEVEL`` environment variable (if set)
    2. ``level_override`` provided by the caller (e.g., CLI flag)
    3. ``config.logging.level`` from the YAML config
    4. Default ``WARNING`` level

    When ``config.logging.file`` is set, the run is also written there; a
    relative path lands in the output directory.
    """
    effective_level_name = (
        os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"
    )
    level_value = _resolve_level(effective_level_name)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)

    if config.logging.file:
        path = Path(config.logging.file)
        if not path.is_absolute():
            path = config.outputs.dir / path
        _attach_run_log(root_logger, path, level_value)
    if level_value > logging.DEBUG:
        for name in ("phonenumbers", "pandas"):
            logging.getLogger(name).setLevel(logging.WARNING)
