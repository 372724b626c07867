"""Retention daemon configuration defaults and runtime settings."""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

VERSION = "1.0.0"

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Policy file read on every run; a template is written here if missing
DEFAULT_CONFIG_PATH = str(PROJECT_ROOT / "config" / "backup_retention.conf")

DEFAULT_LOG_PATH = str(PROJECT_ROOT / "logs" / "backup_retention.log")

DEFAULT_LOCK_PATH = os.path.join(tempfile.gettempdir(), "backup_retention.lock")

# Seconds a mount/usage probe may block before the directory is
# considered unreachable
PROBE_TIMEOUT = 5.0

# Seconds to wait between convergence rounds
POLL_INTERVAL = 2.0

# The log file is trimmed to its newest lines after each run
LOG_MAX_LINES = 1_000_000

LOG_OUTPUT_CONSOLE = "console"
LOG_OUTPUT_BOTH = "both"
LOG_OUTPUT_NONE = "none"
LOG_OUTPUTS = (LOG_OUTPUT_CONSOLE, LOG_OUTPUT_BOTH, LOG_OUTPUT_NONE)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class RetentionSettings:
    """Everything one invocation of the daemon needs to know."""
    config_path: str = DEFAULT_CONFIG_PATH
    log_path: str = DEFAULT_LOG_PATH
    lock_path: str = DEFAULT_LOCK_PATH
    poll_interval: float = POLL_INTERVAL
    probe_timeout: float = PROBE_TIMEOUT
    log_output: str = LOG_OUTPUT_BOTH
    log_max_lines: int = LOG_MAX_LINES
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )
