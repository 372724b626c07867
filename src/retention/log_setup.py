"""Logging configuration and log file trimming."""

import logging
import sys
from pathlib import Path

from src.retention.errors import ConfigError
from src.retention.retention_config import (
    LOG_FORMAT,
    LOG_OUTPUT_BOTH,
    LOG_OUTPUT_CONSOLE,
    LOG_OUTPUT_NONE,
    LOG_OUTPUTS,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", output: str = LOG_OUTPUT_BOTH,
                      log_path: str | None = None):
    """Configure the root logger for one run.

    ``output`` selects where lines go: the console, the console and the
    log file, or nowhere.
    """
    if output not in LOG_OUTPUTS:
        raise ConfigError(f"Unknown log output: {output}")

    handlers: list[logging.Handler] = []
    if output in (LOG_OUTPUT_CONSOLE, LOG_OUTPUT_BOTH):
        handlers.append(logging.StreamHandler(sys.stdout))
    if output == LOG_OUTPUT_BOTH and log_path:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if output == LOG_OUTPUT_NONE:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def trim_log(log_path: str, max_lines: int) -> int:
    """Keep only the newest ``max_lines`` lines of the log file.

    Returns the number of lines removed.
    """
    if max_lines <= 0:
        raise ConfigError(
            f"Log line limit {max_lines} is too small to keep an audit trail"
        )
    path = Path(log_path)
    if not path.is_file():
        return 0

    lines = path.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
    excess = len(lines) - max_lines
    if excess <= 0:
        return 0
    path.write_text("".join(lines[excess:]), encoding="utf-8")
    logger.debug("Trimmed %d line(s) from %s", excess, path)
    return excess
