"""Filesystem access used by the retention engine, backed by psutil.

Every call that may hang on a stale network mount (stat of the directory,
disk usage) runs on a short-lived daemon thread and is abandoned once its
timeout expires. A hung worker cannot block interpreter exit.
"""

import fnmatch
import logging
import math
import os
import shutil
import threading
from dataclasses import dataclass
from enum import Enum

import psutil

from src.retention.errors import ProbeInconsistency, ProbeTimeout

logger = logging.getLogger(__name__)


class ArtifactKind(Enum):
    """What a policy retains. Values are the literal config values."""
    FILE = "arquivo"
    DIRECTORY = "diretorio"


@dataclass(frozen=True)
class BackupArtifact:
    """A file or directory matching a policy pattern."""
    path: str
    mtime: float
    kind: ArtifactKind

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


def format_size(num_bytes: int) -> str:
    """Human-readable size in the style of ``du -h``.

    512 -> 512B, 1536 -> 1.5K, 3 * 1024**3 -> 3.0G
    """
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            if unit == "B":
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}P"


def _call_with_timeout(func, path: str, timeout: float):
    """Run ``func(path)`` on a daemon thread and wait at most ``timeout``.

    Exceptions raised by ``func`` are re-raised in the caller. Raises
    ProbeTimeout if the call has not returned in time.

    A timed-out worker cannot be cancelled: it stays blocked in the kernel
    until the mount answers, one thread per timed-out call. Daemon threads
    do not hold up interpreter exit, and the run ends after convergence,
    so they are left to the process teardown.
    """
    outcome: dict = {}

    def target():
        try:
            outcome["value"] = func(path)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=target, daemon=True, name="fs-probe")
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise ProbeTimeout(path, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def _matches_kind(entry: os.DirEntry, kind: ArtifactKind) -> bool:
    if kind is ArtifactKind.FILE:
        return entry.is_file(follow_symlinks=False)
    return entry.is_dir(follow_symlinks=False)


class FilesystemProbe:
    """Side-effecting adapter over the filesystem. Holds no policy logic."""

    # ------------------------------------------------------------------
    # Liveness and usage
    # ------------------------------------------------------------------

    def check_mount(self, path: str, timeout: float) -> bool:
        """Return True if ``path`` is a reachable directory.

        Returns False when the path does not exist or is not a directory.
        Raises ProbeTimeout when the filesystem does not answer in time.
        """
        try:
            _call_with_timeout(psutil.disk_usage, path, timeout)
        except OSError as exc:
            logger.debug("Mount check failed for %s: %s", path, exc)
            return False
        return os.path.isdir(path)

    def is_live_mount_point(self, path: str, timeout: float) -> bool:
        try:
            return self.check_mount(path, timeout)
        except ProbeTimeout:
            logger.debug("Mount check timed out for %s", path)
            return False

    def disk_usage_percent(self, path: str, timeout: float) -> int:
        """Used space of the filesystem holding ``path``, as ``df`` reports it.

        ``df`` rounds up and excludes blocks reserved for root, so the
        percentage is computed from used and free rather than total.
        """
        try:
            usage = _call_with_timeout(psutil.disk_usage, path, timeout)
        except OSError as exc:
            raise ProbeInconsistency(
                f"Could not read disk usage for {path}: {exc}"
            ) from exc
        available = usage.used + usage.free
        if available == 0:
            return 0
        return math.ceil(usage.used * 100 / available)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def list_matches(
        self, directory: str, kind: ArtifactKind, pattern: str
    ) -> list[BackupArtifact]:
        """Direct children of ``directory`` matching ``pattern`` and ``kind``.

        Sorted oldest first; entries with equal mtimes are ordered by path.
        Entries that vanish while being listed are ignored.
        """
        artifacts = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if not fnmatch.fnmatchcase(entry.name, pattern):
                    continue
                try:
                    if not _matches_kind(entry, kind):
                        continue
                    mtime = entry.stat(follow_symlinks=False).st_mtime
                except FileNotFoundError:
                    continue
                artifacts.append(BackupArtifact(entry.path, mtime, kind))
        artifacts.sort(key=lambda a: (a.mtime, a.path))
        return artifacts

    def size_of(self, path: str) -> int:
        """Size in bytes; directories are summed recursively."""
        if not os.path.isdir(path) or os.path.islink(path):
            return os.lstat(path).st_size
        total = 0
        for root, dirs, files in os.walk(path):
            for name in files + dirs:
                try:
                    total += os.lstat(os.path.join(root, name)).st_size
                except OSError:
                    continue
        return total

    def delete(self, artifact: BackupArtifact) -> bool:
        """Remove an artifact. Returns False if the removal failed."""
        try:
            if artifact.kind is ArtifactKind.DIRECTORY:
                shutil.rmtree(artifact.path)
            else:
                os.remove(artifact.path)
        except OSError as exc:
            logger.error("Failed to remove %s: %s", artifact.path, exc)
            return False
        return True
