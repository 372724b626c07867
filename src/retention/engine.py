"""Retention decision loop.

Each round evaluates every policy once, in configuration order, and evicts
at most one artifact per policy:

    evict iff (disk usage >= threshold or count > max) and count > min

After the round the engine sleeps ``poll_interval`` seconds and starts
another round only if something was deleted. Every deletion lowers a
policy's match count, which can never drop below ``min_retained``, so the
loop always converges.
"""

import logging
import time
from dataclasses import dataclass

from src.config.policy_parser import BackupPolicy
from src.monitor.filesystem_probe import (
    BackupArtifact,
    FilesystemProbe,
    format_size,
)
from src.retention.errors import ProbeInconsistency, ProbeTimeout
from src.retention.retention_config import POLL_INTERVAL, PROBE_TIMEOUT

logger = logging.getLogger(__name__)

STATUS_EVICTED = "evicted"
STATUS_FLOOR_REACHED = "floor_reached"
STATUS_WITHIN_BOUNDS = "within_bounds"
STATUS_NO_MATCHES = "no_matches"
STATUS_UNREACHABLE = "unreachable"


def should_evict(policy: BackupPolicy, disk_usage: int, match_count: int) -> bool:
    """True when usage or count exceeds the policy's limits."""
    return (
        disk_usage >= policy.disk_usage_threshold
        or match_count > policy.max_retained
    )


@dataclass
class PolicyOutcome:
    """Result of evaluating one policy during one round."""
    policy: BackupPolicy
    status: str
    disk_usage: int | None = None
    match_count: int = 0
    evicted_path: str | None = None
    freed_bytes: int | None = None

    @property
    def evicted(self) -> bool:
        return self.status == STATUS_EVICTED


class RetentionEngine:
    """Runs convergence rounds over a fixed, ordered list of policies.

    Parameters
    ----------
    probe:
        Filesystem capability used for every observation and deletion.
    poll_interval:
        Seconds to sleep after each round.
    probe_timeout:
        Seconds a liveness or usage probe may block.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        probe: FilesystemProbe,
        poll_interval: float = POLL_INTERVAL,
        probe_timeout: float = PROBE_TIMEOUT,
        sleep=time.sleep,
    ):
        self.probe = probe
        self.poll_interval = poll_interval
        self.probe_timeout = probe_timeout
        self._sleep = sleep
        self.rounds = 0

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self, policies: list[BackupPolicy]) -> None:
        """Evict until no policy can make further progress."""
        progressed = True
        while progressed:
            outcomes = self.run_round(policies)
            progressed = any(o.evicted for o in outcomes)
            self._sleep(self.poll_interval)
        logger.info("Retention converged after %d round(s)", self.rounds)

    def run_round(self, policies: list[BackupPolicy]) -> list[PolicyOutcome]:
        self.rounds += 1
        logger.info("Round %d: evaluating %d policy(ies)", self.rounds, len(policies))
        return [self.evaluate(policy) for policy in policies]

    # ------------------------------------------------------------------
    # Per-policy evaluation
    # ------------------------------------------------------------------

    def evaluate(self, policy: BackupPolicy) -> PolicyOutcome:
        directory = policy.directory
        if not self.probe.is_live_mount_point(directory, self.probe_timeout):
            logger.warning(
                "Could not evaluate %s: it does not exist or is a stale "
                "mount point. Skipping [%s] this round", directory, policy.name,
            )
            return PolicyOutcome(policy, STATUS_UNREACHABLE)

        logger.info("Analysing backups for pattern [%s] in %s", policy.name, directory)
        try:
            usage = self.probe.disk_usage_percent(directory, self.probe_timeout)
        except ProbeTimeout as exc:
            logger.warning("%s. Skipping [%s] this round", exc, policy.name)
            return PolicyOutcome(policy, STATUS_UNREACHABLE)
        if not 0 <= usage <= 100:
            raise ProbeInconsistency(
                f"Invalid disk usage for {directory} => {usage}"
            )
        logger.info(
            "Disk usage is %d%% (threshold %d%%)", usage, policy.disk_usage_threshold,
        )

        count = len(self._list(policy))
        logger.info("Found %d backup(s) in %s", count, directory)
        if count == 0:
            logger.info(
                "No backups match [%s] in %s. Check the policy or the "
                "backup directory", policy.name, directory,
            )
            return PolicyOutcome(policy, STATUS_NO_MATCHES, disk_usage=usage)
        logger.info(
            "Retained backups: minimum %d, maximum %d",
            policy.min_retained, policy.max_retained,
        )

        if not should_evict(policy, usage, count):
            logger.info("Disk space is adequate: %d%% used in %s", usage, directory)
            return PolicyOutcome(
                policy, STATUS_WITHIN_BOUNDS, disk_usage=usage, match_count=count,
            )

        if count <= policy.min_retained:
            logger.info(
                "Retention for [%s] reached its minimum of %d backup(s) in %s",
                policy.name, policy.min_retained, directory,
            )
            return PolicyOutcome(
                policy, STATUS_FLOOR_REACHED, disk_usage=usage, match_count=count,
            )

        oldest, freed = self._evict_oldest(policy)
        return PolicyOutcome(
            policy,
            STATUS_EVICTED,
            disk_usage=usage,
            match_count=count,
            evicted_path=oldest.path,
            freed_bytes=freed,
        )

    def _list(self, policy: BackupPolicy) -> list[BackupArtifact]:
        try:
            return self.probe.list_matches(
                policy.directory, policy.artifact_kind, policy.pattern,
            )
        except OSError as exc:
            raise ProbeInconsistency(
                f"Could not list {policy.directory}: {exc}"
            ) from exc

    def _evict_oldest(self, policy: BackupPolicy) -> tuple[BackupArtifact, int]:
        artifacts = self._list(policy)
        if not artifacts:
            raise ProbeInconsistency(
                f"Could not find the oldest backup for [{policy.name}] "
                f"in {policy.directory}"
            )
        oldest = min(artifacts, key=lambda a: (a.mtime, a.path))
        logger.info("Oldest backup found: %s", oldest.path)

        try:
            size = self.probe.size_of(oldest.path)
        except OSError as exc:
            raise ProbeInconsistency(
                f"Could not determine the size of {oldest.path}: {exc}"
            ) from exc
        if size is None:
            raise ProbeInconsistency(f"Could not determine the size of {oldest.path}")

        if not self.probe.delete(oldest):
            raise ProbeInconsistency(f"Failed to remove backup {oldest.path}")
        logger.info(
            "Removed backup %s, freeing %s of disk space",
            oldest.path, format_size(size),
        )
        return oldest, size
