"""Process-wide logging setup for WebiScriptura services."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

__all__ = ["configure_logging", "default_log_directory"]

_MANAGED_HANDLER_FLAG = "_webiscriptura_managed_handler"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def default_log_directory() -> Path:
    """``$WEBISCRIPTURA_LOG_DIR`` if set, else ``logs/`` under the working directory."""

    env_override = os.environ.get("WEBISCRIPTURA_LOG_DIR")
    if env_override:
        return Path(env_override).expanduser()
    return Path.cwd() / "logs"


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(
    log_name: str,
    *,
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 3,
) -> Path:
    """Route root logging to ``<log_dir>/<log_name>.log`` (and the console).

    Handlers installed by a previous call are replaced, so calling this again
    with a different name moves logging to the new file.
    """

    numeric_level = _resolve_level(level)
    target_directory = Path(log_dir).expanduser() if log_dir else default_log_directory()
    target_directory.mkdir(parents=True, exist_ok=True)
    log_path = target_directory / f"{log_name}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in list(root_logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if include_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        setattr(handler, _MANAGED_HANDLER_FLAG, True)
        root_logger.addHandler(handler)

    logging.captureWarnings(True)
    return log_path
