"""Staging area: per-import scratch tables mirroring the target schema.

Every table is named with the reserved ``_`` prefix and lives inside the
import transaction.  With ``temporary=True`` the tables are TEMPORARY; with
``temporary=False`` they are regular (UNLOGGED on PostgreSQL) tables that can
be kept after commit for inspection.

Each staging table holds the columns of its table file, in file order, followed
by derived columns that load as NULL and are filled by the transform steps.
The node table has one layout for all versions.  Node files of the older
formats (13 or 10 columns) are loaded into an intermediate table and widened
into it with explicit NULLs for the columns they lack.
"""
from __future__ import annotations

import logging
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from corpus_import.core.constants import CREATED_TABLES, IMPORTED_TABLES, STAGING_PREFIX
from corpus_import.core.errors import FileAccessError, FormatError
from corpus_import.tasks.bulk_copy import CopyLoader, get_copy_loader
from corpus_import.tasks.format_detector import FormatVersion

logger = logging.getLogger(__name__)

_COLUMN_TYPES: dict[str, list[tuple[str, sa.types.TypeEngine]]] = {
    "corpus": [
        ("id", sa.BigInteger()),
        ("name", sa.String()),
        ("type", sa.String()),
        ("version", sa.String()),
        ("pre", sa.BigInteger()),
        ("post", sa.BigInteger()),
        ("top_level", sa.Boolean()),
    ],
    "corpus_annotation": [
        ("corpus_ref", sa.BigInteger()),
        ("namespace", sa.String()),
        ("name", sa.String()),
        ("value", sa.Text()),
    ],
    "text": [
        ("corpus_ref", sa.BigInteger()),
        ("id", sa.Integer()),
        ("name", sa.String()),
        ("text", sa.Text()),
    ],
    "node": [
        ("id", sa.BigInteger()),
        ("text_ref", sa.Integer()),
        ("corpus_ref", sa.BigInteger()),
        ("layer", sa.String()),
        ("name", sa.String()),
        ("left_char", sa.Integer()),
        ("right_char", sa.Integer()),
        ("token_index", sa.Integer()),
        ("left_token", sa.Integer()),
        ("right_token", sa.Integer()),
        ("seg_index", sa.Integer()),
        ("seg_name", sa.String()),
        ("span", sa.Text()),
        ("root", sa.Boolean()),
        ("continuous", sa.Boolean()),
    ],
    "node_annotation": [
        ("node_ref", sa.BigInteger()),
        ("namespace", sa.String()),
        ("name", sa.String()),
        ("value", sa.Text()),
    ],
    "component": [
        ("id", sa.BigInteger()),
        ("type", sa.String()),
        ("layer", sa.String()),
        ("name", sa.String()),
    ],
    "rank": [
        ("id", sa.BigInteger()),
        ("pre", sa.BigInteger()),
        ("post", sa.BigInteger()),
        ("node_ref", sa.BigInteger()),
        ("component_ref", sa.BigInteger()),
        ("parent", sa.BigInteger()),
        ("level", sa.Integer()),
        ("root", sa.Boolean()),
    ],
    "edge_annotation": [
        ("rank_ref", sa.BigInteger()),
        ("namespace", sa.String()),
        ("name", sa.String()),
        ("value", sa.Text()),
    ],
    "nodeidmapping": [
        ("old_id", sa.BigInteger()),
        ("new_id", sa.BigInteger()),
    ],
}

# File column order of the current format.
_V_NEW_FILE_COLUMNS: dict[str, tuple[str, ...]] = {
    "corpus": ("id", "name", "type", "version", "pre", "post", "top_level"),
    "corpus_annotation": ("corpus_ref", "namespace", "name", "value"),
    "text": ("corpus_ref", "id", "name", "text"),
    "node": (
        "id", "text_ref", "corpus_ref", "layer", "name", "left_char", "right_char",
        "token_index", "left_token", "right_token", "seg_index", "seg_name", "span", "root",
    ),
    "node_annotation": ("node_ref", "namespace", "name", "value"),
    "component": ("id", "type", "layer", "name"),
    "rank": ("id", "pre", "post", "node_ref", "component_ref", "parent", "level"),
    "edge_annotation": ("rank_ref", "namespace", "name", "value"),
}

# The 3.1 and 3.2 files differ only in these tables (node is handled apart).
_OLD_FILE_COLUMNS: dict[str, tuple[str, ...]] = {
    **_V_NEW_FILE_COLUMNS,
    "corpus": ("id", "name", "type", "version", "pre", "post"),
    "text": ("id", "name", "text"),
    "rank": ("pre", "post", "node_ref", "component_ref", "parent"),
}

# Intermediate layouts of node files that lack the segmentation columns.
_NARROW_NODE_LAYOUTS: dict[int, list[tuple[str, sa.types.TypeEngine]]] = {
    13: [
        ("id", sa.BigInteger()),
        ("text_ref", sa.Integer()),
        ("corpus_ref", sa.BigInteger()),
        ("layer", sa.String()),
        ("name", sa.String()),
        ("left_char", sa.Integer()),
        ("right_char", sa.Integer()),
        ("token_index", sa.Integer()),
        ("seg_name", sa.String()),
        ("seg_left", sa.Integer()),
        ("seg_right", sa.Integer()),
        ("continuous", sa.Boolean()),
        ("span", sa.Text()),
    ],
    10: [
        ("id", sa.BigInteger()),
        ("text_ref", sa.Integer()),
        ("corpus_ref", sa.BigInteger()),
        ("layer", sa.String()),
        ("name", sa.String()),
        ("left_char", sa.Integer()),
        ("right_char", sa.Integer()),
        ("token_index", sa.Integer()),
        ("continuous", sa.Boolean()),
        ("span", sa.Text()),
    ],
}

_NODE_COLUMN_COUNTS: dict[FormatVersion, tuple[int, ...]] = {
    FormatVersion.V_NEW: (14,),
    FormatVersion.V_MID: (13, 10),
    FormatVersion.V_OLD: (10, 13),
}


def _null(name: str, types: dict[str, sa.types.TypeEngine]) -> sa.Label:
    return sa.cast(sa.null(), types[name]).label(name)


def staging_name(table: str) -> str:
    return f"{STAGING_PREFIX}{table}"


def file_columns(version: FormatVersion, table: str) -> tuple[str, ...]:
    """Return the column order of ``table``'s file in ``version``."""
    if version is FormatVersion.V_NEW:
        return _V_NEW_FILE_COLUMNS[table]
    return _OLD_FILE_COLUMNS[table]


class StagingArea:
    """Staging tables of one import, bound to the import's connection.

    Parameters
    ----------
    connection:
        The connection of the import transaction.  Every staging statement
        runs on it.
    version:
        Detected format of the import directory; selects file layouts.
    temporary:
        TEMPORARY tables when true, otherwise regular (UNLOGGED) tables.
    keep:
        Leave the tables in place when ``drop()`` is called.
    loader:
        Bulk-copy loader; defaults to the one matching the connection's driver.
    """

    def __init__(
        self,
        connection: Connection,
        version: FormatVersion,
        *,
        temporary: bool = True,
        keep: bool = False,
        loader: CopyLoader | None = None,
    ):
        self.connection = connection
        self.version = version
        self.temporary = temporary
        self.keep = keep
        self._loader = loader
        self.metadata = sa.MetaData()
        self.tables: dict[str, sa.Table] = {}
        for name in (*IMPORTED_TABLES, *CREATED_TABLES):
            self.tables[name] = self._define(staging_name(name), _COLUMN_TYPES[name])
        self.created = False
        self.indexed = False

    @property
    def is_postgres(self) -> bool:
        return self.connection.dialect.name == "postgresql"

    def _prefixes(self, temporary: bool) -> list[str]:
        if temporary:
            return ["TEMPORARY"]
        if self.is_postgres:
            return ["UNLOGGED"]
        return []

    def _define(self, name: str, columns, *, temporary: bool | None = None) -> sa.Table:
        temporary = self.temporary if temporary is None else temporary
        return sa.Table(
            name,
            self.metadata,
            *(sa.Column(column, type_) for column, type_ in columns),
            prefixes=self._prefixes(temporary),
        )

    def table(self, name: str) -> sa.Table:
        return self.tables[name]

    @property
    def loader(self) -> CopyLoader:
        if self._loader is None:
            self._loader = get_copy_loader(self.connection)
        return self._loader

    def create(self) -> None:
        logger.info(
            "Creating %s staging area for format %s",
            "temporary" if self.temporary else "persistent",
            self.version.value,
        )
        for table in self.tables.values():
            # a previous import on this connection may have kept its tables
            table.drop(self.connection, checkfirst=True)
            table.create(self.connection)
        self.created = True

    def bulk_load(self, name: str, source: str | Path) -> int:
        """Copy one table file into its staging table and return the row count."""
        source = Path(source)
        if name == "node":
            return self._bulk_load_node(source)
        return self._copy(self.tables[name], file_columns(self.version, name), source)

    def _copy(self, table: sa.Table, columns, source: Path) -> int:
        logger.info("Bulk-loading %s into %s", source.name, table.name)
        try:
            fh = open(source, "rb")
        except OSError as exc:
            raise FileAccessError(source, exc.strerror) from exc
        with fh:
            return self.loader.copy_into(self.connection, table, columns, fh)

    def _node_column_count(self, source: Path) -> int:
        try:
            with open(source, "r", encoding="utf-8") as fh:
                first_line = fh.readline().rstrip("\r\n")
        except OSError as exc:
            raise FileAccessError(source, exc.strerror) from exc
        if not first_line:
            return _NODE_COLUMN_COUNTS[self.version][0]
        return len(first_line.split("\t"))

    def _bulk_load_node(self, source: Path) -> int:
        node = self.tables["node"]
        columns = self._node_column_count(source)
        if columns not in _NODE_COLUMN_COUNTS[self.version]:
            raise FormatError(
                f"{source.name}: illegal number of columns {columns}, "
                f"expected one of {_NODE_COLUMN_COUNTS[self.version]}"
            )
        if columns == 14:
            return self._copy(node, _V_NEW_FILE_COLUMNS["node"], source)

        logger.info("Widening %d-column node table into the staging area", columns)
        layout = _NARROW_NODE_LAYOUTS[columns]
        intermediate = self._define(staging_name("tmpnode"), layout, temporary=True)
        try:
            intermediate.drop(self.connection, checkfirst=True)
            intermediate.create(self.connection)
            self._copy(intermediate, [column for column, _ in layout], source)

            src = intermediate.c
            types = dict(_COLUMN_TYPES["node"])
            if columns == 13:
                seg_index, seg_name = src.seg_left, src.seg_name
            else:
                seg_index, seg_name = _null("seg_index", types), _null("seg_name", types)
            select = sa.select(
                src.id,
                src.text_ref,
                src.corpus_ref,
                src.layer,
                src.name,
                src.left_char,
                src.right_char,
                src.token_index,
                _null("left_token", types),
                _null("right_token", types),
                seg_index,
                seg_name,
                src.span,
                _null("root", types),
                src.continuous,
            )
            result = self.connection.execute(
                node.insert().from_select([column.name for column in node.columns], select)
            )
            intermediate.drop(self.connection)
        finally:
            self.metadata.remove(intermediate)
        return result.rowcount

    def drop(self) -> None:
        """Drop staging tables in reverse creation order, unless keeping them."""
        if self.keep:
            logger.info("Keeping staging area for inspection")
            return
        if not self.created:
            return
        logger.info("Dropping staging area")
        for table in reversed(list(self.tables.values())):
            table.drop(self.connection, checkfirst=True)
        self.created = False
        self.indexed = False
