"""Shared fixtures: an in-memory stand-in for FilesystemProbe."""

import fnmatch
import posixpath

import pytest

from src.monitor.filesystem_probe import ArtifactKind, BackupArtifact
from src.retention.errors import ProbeTimeout


class FakeProbe:
    """Simulated backup directories with fixed or shrinking disk usage.

    ``freed_per_delete`` lowers a directory's usage on every deletion so
    tests can model evictions that free space.
    """

    def __init__(self):
        self.dirs: dict[str, dict] = {}
        self.unreachable: set[str] = set()
        self.timeouts: set[str] = set()
        self.deleted: list[str] = []

    def add_dir(self, directory, usage=50, freed_per_delete=0):
        self.dirs[directory] = {
            "usage": usage,
            "freed": freed_per_delete,
            "artifacts": {},
        }
        return directory

    def add_artifact(self, directory, name, mtime, size=1024,
                     kind=ArtifactKind.FILE):
        path = posixpath.join(directory, name)
        self.dirs[directory]["artifacts"][path] = (mtime, size, kind)
        return path

    def names(self, directory):
        return sorted(
            posixpath.basename(p) for p in self.dirs[directory]["artifacts"]
        )

    # FilesystemProbe interface ------------------------------------------

    def check_mount(self, path, timeout):
        if path in self.timeouts:
            raise ProbeTimeout(path, timeout)
        return path in self.dirs and path not in self.unreachable

    def is_live_mount_point(self, path, timeout):
        try:
            return self.check_mount(path, timeout)
        except ProbeTimeout:
            return False

    def disk_usage_percent(self, path, timeout):
        if path in self.timeouts:
            raise ProbeTimeout(path, timeout)
        return self.dirs[path]["usage"]

    def list_matches(self, directory, kind, pattern):
        found = [
            BackupArtifact(path, mtime, k)
            for path, (mtime, _size, k) in self.dirs[directory]["artifacts"].items()
            if k is kind and fnmatch.fnmatchcase(posixpath.basename(path), pattern)
        ]
        return sorted(found, key=lambda a: (a.mtime, a.path))

    def size_of(self, path):
        directory = posixpath.dirname(path)
        return self.dirs[directory]["artifacts"][path][1]

    def delete(self, artifact):
        directory = posixpath.dirname(artifact.path)
        entry = self.dirs[directory]
        del entry["artifacts"][artifact.path]
        entry["usage"] -= entry["freed"]
        self.deleted.append(artifact.path)
        return True


@pytest.fixture
def probe():
    return FakeProbe()
