"""Backup policy configuration parser.

The configuration file is line oriented::

    # comment
    [backup*.tar.gz]
    tipo_backup=arquivo
    diretorio=/srv/backups
    limite_disco=90
    qtd_minima_backups=15
    qtd_maxima_backups=200

A ``[pattern]`` header opens a section; ``key=value`` lines fill it in any
order. A section is committed as soon as all six fields are set. Parsing is
an explicit two-state machine (AWAITING_SECTION / ACCUMULATING_FIELDS) and
any malformed line aborts the whole parse with a ConfigError.
"""

import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path

from src.monitor.filesystem_probe import ArtifactKind, FilesystemProbe
from src.retention.errors import ConfigError, ProbeTimeout
from src.retention.retention_config import PROBE_TIMEOUT

logger = logging.getLogger(__name__)

KEY_KIND = "tipo_backup"
KEY_DIRECTORY = "diretorio"
KEY_THRESHOLD = "limite_disco"
KEY_MIN = "qtd_minima_backups"
KEY_MAX = "qtd_maxima_backups"
KNOWN_KEYS = (KEY_KIND, KEY_DIRECTORY, KEY_THRESHOLD, KEY_MIN, KEY_MAX)

AWAITING_SECTION = "awaiting_section"
ACCUMULATING_FIELDS = "accumulating_fields"

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class BackupPolicy:
    """One fully validated retention rule."""
    name: str
    artifact_kind: ArtifactKind
    directory: str
    disk_usage_threshold: int
    min_retained: int
    max_retained: int
    pattern: str


@dataclass
class PartialPolicy:
    """Fields collected so far for the section being parsed."""
    pattern: str
    line_number: int
    artifact_kind: ArtifactKind | None = None
    directory: str | None = None
    disk_usage_threshold: int | None = None
    min_retained: int | None = None
    max_retained: int | None = None
    skipped: bool = False

    def is_complete(self) -> bool:
        return all(
            getattr(self, f.name) is not None
            for f in fields(self)
            if f.name not in ("line_number", "skipped")
        )

    def missing_keys(self) -> list[str]:
        by_field = {
            "artifact_kind": KEY_KIND,
            "directory": KEY_DIRECTORY,
            "disk_usage_threshold": KEY_THRESHOLD,
            "min_retained": KEY_MIN,
            "max_retained": KEY_MAX,
        }
        return [key for attr, key in by_field.items() if getattr(self, attr) is None]

    def to_policy(self) -> BackupPolicy:
        return BackupPolicy(
            name=self.pattern,
            artifact_kind=self.artifact_kind,
            directory=self.directory,
            disk_usage_threshold=self.disk_usage_threshold,
            min_retained=self.min_retained,
            max_retained=self.max_retained,
            pattern=self.pattern,
        )


def is_section_header(line: str) -> bool:
    return len(line) >= 2 and line.startswith("[") and line.endswith("]")


def _parse_int(key: str, value: str, line_number: int, low: int, high: int | None = None) -> int:
    if not _DIGITS.fullmatch(value):
        raise ConfigError(
            f"Line {line_number}: invalid value for {key} => {value}. "
            "Expected a base-10 integer"
        )
    number = int(value)
    if number < low or (high is not None and number > high):
        bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ConfigError(
            f"Line {line_number}: invalid value for {key} => {value}. "
            f"The value must be {bounds}"
        )
    return number


class PolicyParser:
    """State machine turning configuration text into BackupPolicy records."""

    def __init__(self, probe: FilesystemProbe, probe_timeout: float = PROBE_TIMEOUT):
        self.probe = probe
        self.probe_timeout = probe_timeout
        self._reset()

    def _reset(self):
        self.state = AWAITING_SECTION
        self.pending: PartialPolicy | None = None
        self.policies: list[BackupPolicy] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def parse(self, text: str) -> list[BackupPolicy]:
        self._reset()
        for line_number, raw in enumerate(text.splitlines(), start=1):
            self.feed(raw, line_number)
        self._close_section()

        if not self.policies:
            raise ConfigError(
                "No backup policies found. Check the configuration file"
            )
        logger.info(
            "Configuration parsed: %d policy(ies) => %s",
            len(self.policies),
            ", ".join(f"[{p.name}] {p.directory}" for p in self.policies),
        )
        return list(self.policies)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def feed(self, raw: str, line_number: int):
        """Apply one line to the state machine."""
        line = raw.strip()
        if not line or line.startswith("#"):
            return

        if is_section_header(line):
            self._close_section()
            self._open_section(line[1:-1], line_number)
            return

        key, _, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if key not in KNOWN_KEYS:
            raise ConfigError(f"Line {line_number}: unknown key => {key}")
        if not value:
            raise ConfigError(f"Line {line_number}: empty value for {key}")
        if self.state != ACCUMULATING_FIELDS:
            raise ConfigError(
                f"Line {line_number}: {key} appears outside of a [pattern] section"
            )

        self._set_field(key, value, line_number)

        if not self.pending.skipped and self.pending.is_complete():
            self._commit()

    def _open_section(self, pattern: str, line_number: int):
        if not pattern:
            raise ConfigError(f"Line {line_number}: empty backup pattern []")
        if set(pattern) == {"*"}:
            raise ConfigError(
                f"Line {line_number}: the pattern [{pattern}] consists only of "
                "wildcards and would match every file"
            )
        self.pending = PartialPolicy(pattern=pattern, line_number=line_number)
        self.state = ACCUMULATING_FIELDS

    def _close_section(self):
        if self.state != ACCUMULATING_FIELDS:
            return
        pending = self.pending
        self.pending = None
        self.state = AWAITING_SECTION
        if pending.skipped:
            logger.warning(
                "Section [%s] skipped: its directory could not be reached",
                pending.pattern,
            )
            return
        raise ConfigError(
            f"Line {pending.line_number}: section [{pending.pattern}] is "
            f"incomplete, missing {', '.join(pending.missing_keys())}"
        )

    def _commit(self):
        policy = self.pending.to_policy()
        if policy.min_retained > policy.max_retained:
            logger.warning(
                "Policy [%s]: qtd_minima_backups (%d) is greater than "
                "qtd_maxima_backups (%d); count-based eviction will stop at %d",
                policy.name, policy.min_retained, policy.max_retained,
                policy.min_retained,
            )
        self.policies.append(policy)
        self.pending = None
        self.state = AWAITING_SECTION

    # ------------------------------------------------------------------
    # Field validation
    # ------------------------------------------------------------------

    def _set_field(self, key: str, value: str, line_number: int):
        pending = self.pending
        if key == KEY_KIND:
            try:
                pending.artifact_kind = ArtifactKind(value)
            except ValueError:
                raise ConfigError(
                    f"Line {line_number}: invalid {key} => {value}. "
                    f"Expected '{ArtifactKind.FILE.value}' or "
                    f"'{ArtifactKind.DIRECTORY.value}'"
                ) from None
        elif key == KEY_DIRECTORY:
            self._set_directory(value, line_number)
        elif key == KEY_THRESHOLD:
            pending.disk_usage_threshold = _parse_int(key, value, line_number, 1, 99)
        elif key == KEY_MIN:
            pending.min_retained = _parse_int(key, value, line_number, 1)
        elif key == KEY_MAX:
            pending.max_retained = _parse_int(key, value, line_number, 1)

    def _set_directory(self, value: str, line_number: int):
        try:
            reachable = self.probe.check_mount(value, self.probe_timeout)
        except ProbeTimeout as exc:
            logger.warning("Line %d: %s", line_number, exc)
            self.pending.skipped = True
            return
        if not reachable:
            raise ConfigError(
                f"Line {line_number}: directory does not exist => {value}"
            )
        self.pending.directory = value


def parse(text: str, probe: FilesystemProbe, probe_timeout: float = PROBE_TIMEOUT) -> list[BackupPolicy]:
    """Parse configuration text into an ordered list of policies."""
    return PolicyParser(probe, probe_timeout).parse(text)


def load_policies(config_path: str, probe: FilesystemProbe,
                  probe_timeout: float = PROBE_TIMEOUT) -> list[BackupPolicy]:
    """Read and parse the configuration file at ``config_path``."""
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")
    logger.info("Reading configuration from %s", path)
    return parse(path.read_text(encoding="utf-8"), probe, probe_timeout)
