"""Bulk loading of tab-delimited relANNIS files through the engine's COPY channel.

The staging area never inserts table files row by row.  ``get_copy_loader``
returns the loader for the connection's driver and refuses drivers that have
no native bulk-copy protocol.
"""
from __future__ import annotations

import logging
from typing import BinaryIO, Protocol, Sequence

import psycopg
import sqlalchemy as sa
from psycopg import sql
from sqlalchemy.engine import Connection

from corpus_import.core.errors import DatabaseAccessError

logger = logging.getLogger(__name__)


class CopyLoader(Protocol):
    def copy_into(
        self,
        connection: Connection,
        table: sa.Table,
        columns: Sequence[str],
        source: BinaryIO,
    ) -> int:
        """Stream ``source`` into ``columns`` of ``table``; return the row count."""
        ...


class PostgresCopyLoader:
    """COPY ... FROM STDIN over psycopg 3, in text format with ``NULL`` as null token."""

    chunk_size = 1 << 16

    def copy_into(
        self,
        connection: Connection,
        table: sa.Table,
        columns: Sequence[str],
        source: BinaryIO,
    ) -> int:
        statement = sql.SQL(
            "COPY {table} ({columns}) FROM STDIN WITH (FORMAT text, DELIMITER E'\\t', NULL 'NULL')"
        ).format(
            table=sql.Identifier(table.name),
            columns=sql.SQL(", ").join(sql.Identifier(column) for column in columns),
        )
        driver_connection = connection.connection.driver_connection
        try:
            with driver_connection.cursor() as cursor:
                with cursor.copy(statement) as copy:
                    while chunk := source.read(self.chunk_size):
                        copy.write(chunk)
                rows = cursor.rowcount
        except psycopg.Error as exc:
            raise DatabaseAccessError(f"bulk copy into {table.name} failed", str(exc).strip()) from exc
        logger.debug("Copied %d rows into %s", rows, table.name)
        return rows


def get_copy_loader(connection: Connection) -> CopyLoader:
    dialect = connection.dialect
    if dialect.name == "postgresql" and dialect.driver == "psycopg":
        return PostgresCopyLoader()
    raise DatabaseAccessError(
        "bulk-copy protocol unavailable",
        f"driver {dialect.name}+{dialect.driver} has no COPY channel",
    )
