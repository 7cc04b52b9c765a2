"""
Logging for strm_watch.

- Plain daily log file: <log_dir>/strm_watch_<YYYY-MM-DD>.log
- Colored stdout:
  - STRM / REPLICATE green
  - SOFT_DELETE orange
  - *_FAIL and errors red
  - file paths white, folder paths light brown
"""

from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

from colorama import just_fix_windows_console

LOGGER_NAME = "strm_watch"


class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"
    GREY = "\x1b[90m"


ACTION_COLORS = {
    "STRM": Ansi.GREEN,
    "REPLICATE": Ansi.GREEN,
    "SOFT_DELETE": Ansi.ORANGE,
    "DELETE": Ansi.LIGHT_BROWN,
    "MKDIR": Ansi.LIGHT_BROWN,
    "WATCH": Ansi.LIGHT_BROWN,
    "PROGRESS": Ansi.GREY,
    "FILE": Ansi.WHITE,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        if action:
            if action.endswith("_FAIL"):
                action_color = Ansi.RED
            else:
                action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


class ColorizingHandler(logging.StreamHandler):
    """Console handler; its own type so repeated setup_logger calls find it."""


def _today_log_name(prefix: str = LOGGER_NAME) -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def setup_logger(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False
    for handler in logger.handlers:
        handler.setLevel(level)

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    if not any(isinstance(h, ColorizingHandler) for h in logger.handlers):
        just_fix_windows_console()
        ch = ColorizingHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))
        logger.addHandler(ch)

    # one daily file per process; a later call with a log_dir still adds it
    if log_dir is not None and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        fh.setLevel(level)
        logger.addHandler(fh)
        logger.info("Logging to: %s", log_path)

    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else (path.exists() and path.is_dir())
    logger.log(level, f"{action} | {message}", extra=extra)
