"""Daemon entry points.

``run_retention`` is the whole retention run: lock, read policies, converge,
trim the log. It returns a process exit status instead of exiting so the
launcher decides how to terminate.
"""

import logging
import os
import shlex
import shutil
import subprocess
import time

from src.config.config_template import ensure_config_file, write_template
from src.config.policy_parser import load_policies
from src.monitor.filesystem_probe import FilesystemProbe
from src.retention.engine import RetentionEngine
from src.retention.errors import RetentionError
from src.retention.instance_lock import InstanceLock
from src.retention.log_setup import trim_log
from src.retention.retention_config import LOG_OUTPUT_BOTH, RetentionSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

EDITORS = ("vim", "vi", "nano")
PAGERS = ("less", "more")


def run_retention(settings: RetentionSettings, probe: FilesystemProbe | None = None,
                  sleep=time.sleep) -> int:
    """Run retention until convergence. Returns 0 on success, 1 on error."""
    probe = probe or FilesystemProbe()
    lock = InstanceLock(settings.lock_path)
    try:
        lock.acquire()
        ensure_config_file(settings.config_path)
        policies = load_policies(settings.config_path, probe, settings.probe_timeout)

        engine = RetentionEngine(
            probe,
            poll_interval=settings.poll_interval,
            probe_timeout=settings.probe_timeout,
            sleep=sleep,
        )
        engine.run(policies)

        if settings.log_output == LOG_OUTPUT_BOTH:
            trim_log(settings.log_path, settings.log_max_lines)
    except RetentionError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    finally:
        lock.release()
    return EXIT_OK


def regenerate_config(settings: RetentionSettings) -> int:
    """Write the template over the configuration file."""
    path = write_template(settings.config_path)
    logger.info("Configuration template written: %s", path)
    return EXIT_OK


def _first_available(env_var: str, candidates: tuple[str, ...]) -> str | None:
    preferred = os.environ.get(env_var)
    if preferred:
        return preferred
    for name in candidates:
        if shutil.which(name):
            return name
    return None


def edit_config(settings: RetentionSettings) -> int:
    """Open the configuration file in ``$EDITOR`` or the first editor found."""
    editor = _first_available("EDITOR", EDITORS)
    if editor is None:
        logger.error("No text editor found; set $EDITOR")
        return EXIT_FAILURE
    return subprocess.run([*shlex.split(editor), settings.config_path]).returncode


def view_log(settings: RetentionSettings) -> int:
    """Show the log file read-only in ``$PAGER`` or the first pager found."""
    if not os.path.isfile(settings.log_path):
        logger.error("Log file not found: %s", settings.log_path)
        return EXIT_FAILURE
    pager = _first_available("PAGER", PAGERS)
    if pager is None:
        logger.error("No pager found; set $PAGER")
        return EXIT_FAILURE
    return subprocess.run([*shlex.split(pager), settings.log_path]).returncode
