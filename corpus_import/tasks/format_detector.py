"""Format detection for relANNIS import directories.

Precedence
----------
1. ``annis.version`` present: its first line selects the format.  Only
   ``3.3`` is recognized; any other content is UNKNOWN, the node table is
   not consulted.
2. No marker: the first line of ``node.tab`` is split on tabs and the field
   count selects the format (13 -> 3.2, 10 -> 3.1).
3. Anything else is UNKNOWN.
"""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from corpus_import.core.constants import VERSION_FILE
from corpus_import.core.errors import FormatError

logger = logging.getLogger(__name__)

_V_MID_NODE_COLUMNS = 13
_V_OLD_NODE_COLUMNS = 10


class FormatVersion(str, Enum):
    V_OLD = "3.1"
    V_MID = "3.2"
    V_NEW = "3.3"
    UNKNOWN = "unknown"

    @property
    def file_suffix(self) -> str:
        if self is FormatVersion.V_NEW:
            return ".annis"
        if self is FormatVersion.UNKNOWN:
            raise FormatError("unknown format version has no table file suffix")
        return ".tab"


def _read_first_line(path: Path) -> str | None:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return fh.readline().rstrip("\r\n")
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None


def detect_format(path: str | Path) -> FormatVersion:
    directory = Path(path)
    if not directory.is_dir():
        return FormatVersion.UNKNOWN

    version_file = directory / VERSION_FILE
    if version_file.is_file():
        first_line = _read_first_line(version_file)
        if first_line is not None and first_line.strip() == FormatVersion.V_NEW.value:
            return FormatVersion.V_NEW
        return FormatVersion.UNKNOWN

    node_file = directory / "node.tab"
    if node_file.is_file():
        first_line = _read_first_line(node_file)
        if first_line is not None:
            columns = len(first_line.split("\t"))
            if columns == _V_MID_NODE_COLUMNS:
                return FormatVersion.V_MID
            if columns == _V_OLD_NODE_COLUMNS:
                return FormatVersion.V_OLD
    return FormatVersion.UNKNOWN


def require_format(path: str | Path) -> FormatVersion:
    """Detect the format of ``path``, raising FormatError when it is UNKNOWN."""
    version = detect_format(path)
    if version is FormatVersion.UNKNOWN:
        raise FormatError(f"{path}: not a recognized relANNIS import directory")
    logger.info("Detected relANNIS %s format in %s", version.value, path)
    return version
