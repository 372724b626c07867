"""Single-instance guard.

An exclusive, non-blocking ``flock`` on a lock file that records the
holder's PID. The kernel drops the lock when the holder dies, so a stale
file left by a crashed run never blocks the next one.
"""

import fcntl
import logging
import os

import psutil

from src.retention.errors import InstanceLockError

logger = logging.getLogger(__name__)


def describe_process(pid: int) -> str:
    """Best-effort description of a PID for diagnostics."""
    try:
        proc = psutil.Process(pid)
        cmdline = " ".join(proc.cmdline()) or proc.name()
        return f"pid={pid} ({cmdline})"
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return f"pid={pid}"


class InstanceLock:
    """Exclusive advisory lock, usable as a context manager.

    Usage::

        with InstanceLock("/tmp/backup_retention.lock"):
            ...
    """

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self):
        while True:
            fd = self._open()
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                holder = self._read_holder(fd)
                os.close(fd)
                detail = describe_process(holder) if holder else "unknown holder"
                raise InstanceLockError(
                    f"Another instance is already running ({detail}). "
                    f"Aborting to avoid conflicts; lock file {self.lock_path}"
                ) from None
            if self._is_current(fd):
                break
            # The previous holder unlinked the file after we opened it.
            os.close(fd)
            logger.debug("Lock file %s was replaced, retrying", self.lock_path)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        os.fsync(fd)
        self._fd = fd
        logger.debug("Acquired lock %s (pid=%d)", self.lock_path, os.getpid())

    def _open(self) -> int:
        try:
            return os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise InstanceLockError(
                f"Cannot open lock file {self.lock_path}: {exc}"
            ) from exc

    def _is_current(self, fd: int) -> bool:
        try:
            on_disk = os.stat(self.lock_path)
        except FileNotFoundError:
            return False
        opened = os.fstat(fd)
        return (opened.st_dev, opened.st_ino) == (on_disk.st_dev, on_disk.st_ino)

    def release(self):
        if self._fd is None:
            return
        try:
            os.unlink(self.lock_path)
        except FileNotFoundError:
            pass
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.debug("Released lock %s", self.lock_path)

    @staticmethod
    def _read_holder(fd: int) -> int | None:
        os.lseek(fd, 0, os.SEEK_SET)
        content = os.read(fd, 64).decode(errors="replace").strip()
        return int(content) if content.isdigit() else None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
