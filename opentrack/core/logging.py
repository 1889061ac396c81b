from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"


def configure_logging() -> None:
    """Log to stdout, and also to ``LOG_FILE_PATH`` when it is set."""
    from opentrack.core.config import get_settings

    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT)

    log_path = get_settings().log_file_path
    if not log_path:
        return
    log_path = log_path.expanduser()
    if not _ensure_log_path(log_path):
        return
    try:
        logger.add(
            str(log_path),
            format=LOG_FORMAT,
            level="INFO",
            encoding="utf-8",
            enqueue=True,
        )
    except OSError as exc:
        logger.warning(f"LOG FILE DISABLED - unable to open file path={log_path} error={exc}")


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"LOG FILE DISABLED - unable to create directory path={path.parent} error={exc}"
        )
        return False
    return True


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def _log(level: str, message: str, meta: dict[str, Any]) -> None:
    # opt(depth=2) reports the caller of log_* rather than this helper
    if meta:
        logger.bind(**meta).opt(depth=2).log(level, f"{message} | {_format_meta(meta)}")
    else:
        logger.opt(depth=2).log(level, message)


def log_error(message: str, **meta: Any) -> None:
    _log("ERROR", message, meta)


def log_warning(message: str, **meta: Any) -> None:
    _log("WARNING", message, meta)


def log_info(message: str, **meta: Any) -> None:
    _log("INFO", message, meta)


def log_debug(message: str, **meta: Any) -> None:
    _log("DEBUG", message, meta)
