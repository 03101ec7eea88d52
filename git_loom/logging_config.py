"""Logging configuration for git-loom

Log records go to stderr so that stdout stays clean for ``--json`` output.
"""
import logging
import sys
from pathlib import Path

LOG_FILE = Path.home() / ".config" / "git-loom" / "git-loom.log"

# Chatty library loggers, kept at WARNING unless --debug
LIBRARY_LOGGERS = ("git", "github", "urllib3")

DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEBUG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name when stderr is a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color and sys.stderr.isatty():
            # Copy so the file handler still sees the plain level name
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _resolve_level(verbose: bool, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure the root logger for one CLI run.

    Args:
        verbose: Show lifecycle messages (INFO)
        debug: Show everything (DEBUG), including git plumbing, and also
            write the run to ``~/.config/git-loom/git-loom.log``
    """
    level = _resolve_level(verbose, debug)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if debug:
        console_handler.setFormatter(ColoredFormatter(fmt=DEBUG_FORMAT, datefmt=DEBUG_DATE_FORMAT))
    else:
        console_handler.setFormatter(ColoredFormatter(fmt="[%(name)s] %(message)s"))
    root_logger.addHandler(console_handler)

    if debug:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(LOG_FILE, mode="w")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(fmt=DEBUG_FORMAT, datefmt=DEBUG_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a git-loom module, named without the package prefix.

    ``git_loom.services.merge_service`` logs as ``merge_service``.
    """
    for prefix in ("git_loom.", "services."):
        if name.startswith(prefix):
            name = name[len(prefix):]
    return logging.getLogger(name)
