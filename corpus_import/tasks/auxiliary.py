"""Small per-corpus side tables: resolver visualization entries and example queries.

Both files are optional.  They are streamed with pandas in chunks and
inserted through the ORM; neither comes close to the size of the graph tables.

Resolver rows name the corpus they apply to.  A row naming another corpus is
rewritten to the imported one with a warning.  Rows from releases without the
visibility column (8 columns) get ``hidden``.
"""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterator

import pandas as pd
from sqlalchemy.orm import Session

from corpus_import.core.constants import EXAMPLE_QUERIES_TABLE, NULL_TOKEN, RESOLVER_TABLE
from corpus_import.core.errors import FileAccessError, FormatError
from corpus_import.db.repositories import ExampleQueryRepository, ResolverEntryRepository
from corpus_import.tasks.format_detector import FormatVersion

logger = logging.getLogger(__name__)

_RESOLVER_COLUMNS = (
    "corpus",
    "version",
    "namespace",
    "element",
    "vis_type",
    "display_name",
    "visibility",
    "order",
    "mappings",
)
_DEFAULT_VISIBILITY = "hidden"

CHUNK_SIZE: int = 1_000  # rows per pandas iterator chunk


def _read_rows(path: Path) -> Iterator[list[str | None]]:
    try:
        chunks = pd.read_csv(
            str(path),
            sep="\t",
            header=None,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            chunksize=CHUNK_SIZE,
        )
        for chunk in chunks:
            for row in chunk.itertuples(index=False, name=None):
                yield [None if pd.isna(value) or value == NULL_TOKEN else value for value in row]
    except OSError as exc:
        raise FileAccessError(path, exc.strerror) from exc
    except pd.errors.EmptyDataError:
        return
    except pd.errors.ParserError as exc:
        raise FormatError(f"{path.name}: {exc}") from exc


def example_queries_file(import_dir: str | Path, version: FormatVersion) -> Path:
    return Path(import_dir) / f"{EXAMPLE_QUERIES_TABLE}{version.file_suffix}"


def resolver_file(import_dir: str | Path, version: FormatVersion) -> Path:
    return Path(import_dir) / f"{RESOLVER_TABLE}{version.file_suffix}"


def import_resolver_table(
    session: Session,
    import_dir: str | Path,
    version: FormatVersion,
    corpus_name: str,
) -> int:
    path = resolver_file(import_dir, version)
    if not path.is_file():
        logger.info("No resolver file %s, skipping", path.name)
        return 0

    repo = ResolverEntryRepository(session)
    count = 0
    for line_number, row in enumerate(_read_rows(path), start=1):
        if len(row) == len(_RESOLVER_COLUMNS) - 1:
            row = row[:6] + [_DEFAULT_VISIBILITY] + row[6:]
        if len(row) != len(_RESOLVER_COLUMNS):
            raise FormatError(f"{path.name}:{line_number}: expected 8 or 9 columns, got {len(row)}")
        values = dict(zip(_RESOLVER_COLUMNS, row))
        if values["corpus"] != corpus_name:
            logger.warning(
                "Resolver entry on line %d references corpus %r, rewritten to %r",
                line_number,
                values["corpus"],
                corpus_name,
            )
            values["corpus"] = corpus_name
        if values["order"] is not None:
            values["order"] = int(values["order"])
        values["visibility"] = values["visibility"] or _DEFAULT_VISIBILITY
        repo.create(**values)
        count += 1
    logger.info("Imported %d resolver entries", count)
    return count


def import_example_queries(
    session: Session,
    import_dir: str | Path,
    version: FormatVersion,
    corpus_id: int,
) -> int:
    path = example_queries_file(import_dir, version)
    if not path.is_file():
        logger.info("No example query file %s, skipping", path.name)
        return 0

    repo = ExampleQueryRepository(session)
    count = 0
    for line_number, row in enumerate(_read_rows(path), start=1):
        if len(row) < 2 or row[0] is None:
            raise FormatError(f"{path.name}:{line_number}: expected a query and a description")
        repo.create(example_query=row[0], description=row[1], corpus_ref=corpus_id)
        count += 1
    logger.info("Imported %d example queries", count)
    return count
