"""Tests for the single-instance lock."""

import os

import pytest

from src.retention import instance_lock
from src.retention.errors import InstanceLockError
from src.retention.instance_lock import InstanceLock, describe_process


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / "retention.lock")


class TestInstanceLock:
    def test_records_holder_pid(self, lock_path):
        with InstanceLock(lock_path) as lock:
            assert lock.held
            with open(lock_path) as f:
                assert f.read().strip() == str(os.getpid())

    def test_second_instance_rejected(self, lock_path):
        with InstanceLock(lock_path):
            with pytest.raises(InstanceLockError, match=f"pid={os.getpid()}"):
                InstanceLock(lock_path).acquire()

    def test_released_on_exit(self, lock_path):
        with InstanceLock(lock_path):
            pass
        assert not os.path.exists(lock_path)

        second = InstanceLock(lock_path)
        second.acquire()
        assert second.held
        second.release()

    def test_released_when_body_raises(self, lock_path):
        with pytest.raises(RuntimeError):
            with InstanceLock(lock_path):
                raise RuntimeError("boom")
        lock = InstanceLock(lock_path)
        lock.acquire()
        lock.release()

    def test_stale_file_without_lock_is_reused(self, lock_path):
        with open(lock_path, "w") as f:
            f.write("999999\n")

        with InstanceLock(lock_path):
            with open(lock_path) as f:
                assert f.read().strip() == str(os.getpid())

    def test_release_without_acquire_is_noop(self, lock_path):
        lock = InstanceLock(lock_path)
        lock.release()
        assert not lock.held

    def test_file_unlinked_after_open_is_not_trusted(self, lock_path, monkeypatch):
        first = InstanceLock(lock_path)
        first.acquire()
        opened_early = os.open(lock_path, os.O_RDWR)
        first.release()

        real_open = os.open
        handed_out = []

        def open_early_fd_once(path, flags, mode=0o777):
            if not handed_out:
                handed_out.append(path)
                return opened_early
            return real_open(path, flags, mode)

        monkeypatch.setattr(instance_lock.os, "open", open_early_fd_once)
        second = InstanceLock(lock_path)
        second.acquire()
        monkeypatch.undo()

        try:
            assert os.path.exists(lock_path)
            with pytest.raises(InstanceLockError):
                InstanceLock(lock_path).acquire()
        finally:
            second.release()

    def test_unopenable_lock_file_raises_lock_error(self, lock_path, monkeypatch):
        def denied(path, flags, mode=0o777):
            raise PermissionError(13, "Permission denied", path)

        monkeypatch.setattr(instance_lock.os, "open", denied)
        lock = InstanceLock(lock_path)
        with pytest.raises(InstanceLockError, match="Cannot open lock file"):
            lock.acquire()
        assert not lock.held


class TestDescribeProcess:
    def test_current_process(self):
        assert describe_process(os.getpid()).startswith(f"pid={os.getpid()} (")

    def test_unknown_pid(self):
        assert describe_process(2 ** 22 + 12345) == f"pid={2 ** 22 + 12345}"
