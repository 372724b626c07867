"""Annotated configuration template written when no config file exists."""

import logging
from pathlib import Path

from src.retention.errors import ConfigError
from src.retention.retention_config import VERSION

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = f"""\
#
# Configuration generated automatically by backup-retention {VERSION}
#
# Instructions:
#
# 1) Lines starting with '#' are comments and are ignored. Use them to label sections.
# 2) Separate each section with a blank line.
# 3) Each section starts with the backup name pattern between brackets, e.g. [backup*.tar.gz].
#    A pattern made only of wildcards such as [*] is rejected because it would match every file.
# 4) Use the key=value format, without quotes or extra characters.
# 5) Every section must define all five keys below before the next section starts.
#
# Keys:
#
# tipo_backup           = Whether backups are files or directories. Value 'arquivo' or 'diretorio'
# diretorio             = Absolute path where the backups are stored. Value /path/to/backups
# limite_disco          = Disk usage percentage (as shown by df) at which removal starts. Value between 1 and 99
# qtd_minima_backups    = Minimum number of backups to keep. Backups are never removed below this count
# qtd_maxima_backups    = Maximum number of backups to keep. Older backups above this count are removed
#
# Example:
#
# # == Oracle BASE ==
# [backup*tar.z]
# tipo_backup=arquivo
# diretorio=/db/backup/backup_old
# limite_disco=90
# qtd_minima_backups=15
# qtd_maxima_backups=200
"""


def write_template(config_path: str) -> Path:
    """Write (or overwrite) the configuration template."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    return path


def ensure_config_file(config_path: str):
    """Raise ConfigError after writing a template if no config file exists."""
    if Path(config_path).is_file():
        return
    write_template(config_path)
    raise ConfigError(
        f"Config file not found at {config_path}. A template was written "
        "there for reference; edit it and run again"
    )
