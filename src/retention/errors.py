"""Error taxonomy for the retention daemon.

Fatal errors (ConfigError, ProbeInconsistency, InstanceLockError) unwind to
the entry point, which logs them and exits non-zero. ProbeTimeout is soft:
callers catch it where it happens and skip the affected section or policy.
"""


class RetentionError(Exception):
    """Base class for every error raised by the daemon."""


class ConfigError(RetentionError):
    """The configuration file is missing, malformed or defines no policy."""


class ProbeTimeout(RetentionError):
    """A filesystem probe did not answer within its timeout."""

    def __init__(self, path: str, timeout: float):
        super().__init__(
            f"Directory did not respond within {timeout:g}s "
            f"(missing or stale mount point?): {path}"
        )
        self.path = path
        self.timeout = timeout


class ProbeInconsistency(RetentionError):
    """The filesystem returned a result the engine cannot act on."""


class InstanceLockError(RetentionError):
    """Another instance already holds the single-instance lock."""
