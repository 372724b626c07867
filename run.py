"""Launcher for the backup retention daemon.

Reads the retention policies, deletes the oldest matching backups while disk
usage or backup counts exceed their limits, and exits once every policy has
converged. Meant to be scheduled from cron, e.g.::

    */5 * * * * /opt/backup-retention/run.py

Usage:
    python run.py
    python run.py --config /etc/backup_retention.conf --poll-interval 2
    python run.py --overwrite
    python run.py --edit-config
    python run.py --view-log
"""

import argparse
import logging
import sys

from src.retention import daemon
from src.retention.log_setup import configure_logging
from src.retention.retention_config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_LOCK_PATH,
    DEFAULT_LOG_PATH,
    LOG_MAX_LINES,
    LOG_OUTPUT_BOTH,
    LOG_OUTPUT_CONSOLE,
    LOG_OUTPUTS,
    POLL_INTERVAL,
    PROBE_TIMEOUT,
    VERSION,
    RetentionSettings,
)

logger = logging.getLogger("backup_retention")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Disk-space-aware backup retention",
        epilog="Run without an action option to enforce retention.",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=VERSION,
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument(
        "-e", "--edit-config",
        action="store_true",
        help="Open the configuration file in an editor",
    )
    actions.add_argument(
        "-l", "--view-log",
        action="store_true",
        help="Show the log file read-only",
    )
    actions.add_argument(
        "-o", "--overwrite",
        action="store_true",
        help="Write the configuration template, replacing any existing file",
    )

    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the policy file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_PATH,
        help=f"Path to the log file (default: {DEFAULT_LOG_PATH})",
    )
    parser.add_argument(
        "--lock-file",
        default=DEFAULT_LOCK_PATH,
        help=f"Single-instance lock file (default: {DEFAULT_LOCK_PATH})",
    )
    parser.add_argument(
        "--poll-interval",
        default=POLL_INTERVAL,
        type=float,
        help=f"Seconds between retention rounds (default: {POLL_INTERVAL:g})",
    )
    parser.add_argument(
        "--probe-timeout",
        default=PROBE_TIMEOUT,
        type=float,
        help=f"Seconds before a directory is considered unreachable (default: {PROBE_TIMEOUT:g})",
    )
    parser.add_argument(
        "--log-output",
        default=LOG_OUTPUT_BOTH,
        choices=LOG_OUTPUTS,
        help="Where log lines go (default: both console and log file)",
    )
    parser.add_argument(
        "--log-max-lines",
        default=LOG_MAX_LINES,
        type=int,
        help=f"Lines kept in the log file after each run (default: {LOG_MAX_LINES})",
    )
    parser.add_argument(
        "--log-level",
        default=RetentionSettings().log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = RetentionSettings(
        config_path=args.config,
        log_path=args.log_file,
        lock_path=args.lock_file,
        poll_interval=args.poll_interval,
        probe_timeout=args.probe_timeout,
        log_output=args.log_output,
        log_max_lines=args.log_max_lines,
        log_level=args.log_level,
    )

    # Interactive actions never write to the log file
    if args.edit_config:
        configure_logging(settings.log_level, LOG_OUTPUT_CONSOLE)
        return daemon.edit_config(settings)
    if args.view_log:
        configure_logging(settings.log_level, LOG_OUTPUT_CONSOLE)
        return daemon.view_log(settings)

    configure_logging(settings.log_level, settings.log_output, settings.log_path)
    if args.overwrite:
        return daemon.regenerate_config(settings)

    logger.info("Starting backup retention %s", VERSION)
    status = daemon.run_retention(settings)
    logger.info("Backup retention finished with status %d", status)
    return status


if __name__ == "__main__":
    sys.exit(main())
