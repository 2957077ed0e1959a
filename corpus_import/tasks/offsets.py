"""ID offsets: place a new corpus in the id space shared by all imports.

Corpus ids, corpus pre/post values and node ids are global.  Before the
staged rows are copied into the target schema they are shifted by offsets
read from the ``corpus_stats`` bookkeeping, so that the new corpus's ids and
nested-set interval never overlap any earlier import's.  Component and rank
ids stay local: their target rows are keyed by the top-level corpus.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from corpus_import.db.models import CorpusStats
from corpus_import.tasks.staging import StagingArea

logger = logging.getLogger(__name__)

# Arbitrary constant identifying the import lock among advisory locks.
IMPORT_LOCK_KEY = 0x616E6E6973


@dataclass(frozen=True)
class Offsets:
    corpus_id_base: int
    corpus_post_base: int
    node_id_base: int


def acquire_import_lock(connection: Connection) -> None:
    """Serialize imports for the rest of the transaction.

    The offsets are a read-modify-write of ``corpus_stats``; on PostgreSQL a
    transaction-level advisory lock makes that atomic across processes.
    SQLite serializes writers on its own.
    """
    if connection.dialect.name != "postgresql":
        return
    logger.debug("Waiting for import lock")
    connection.execute(sa.select(sa.func.pg_advisory_xact_lock(IMPORT_LOCK_KEY)))


def calculate_offsets(connection: Connection) -> Offsets:
    stats = CorpusStats.__table__
    row = connection.execute(
        sa.select(
            sa.func.coalesce(sa.func.max(stats.c.max_corpus_id) + 1, 0),
            sa.func.coalesce(sa.func.max(stats.c.max_corpus_post) + 1, 0),
            sa.func.coalesce(sa.func.max(stats.c.max_node_id) + 1, 0),
        )
    ).one()
    offsets = Offsets(corpus_id_base=row[0], corpus_post_base=row[1], node_id_base=row[2])
    logger.info(
        "Offsets: corpus id +%d, corpus pre/post +%d, node id +%d",
        offsets.corpus_id_base,
        offsets.corpus_post_base,
        offsets.node_id_base,
    )
    return offsets


def get_new_toplevel_corpus_id(staging: StagingArea, offsets: Offsets) -> int:
    corpus = staging.table("corpus")
    staged_id = staging.connection.execute(
        sa.select(sa.func.max(corpus.c.id)).where(corpus.c.top_level.is_(True))
    ).scalar_one()
    return staged_id + offsets.corpus_id_base


def create_node_id_mapping(staging: StagingArea, offsets: Offsets) -> int:
    """Fill the staged-to-final node id mapping; return the number of nodes mapped."""
    node = staging.table("node")
    mapping = staging.table("nodeidmapping")
    select = sa.select(node.c.id, (node.c.id + offsets.node_id_base).label("new_id"))
    result = staging.connection.execute(mapping.insert().from_select(["old_id", "new_id"], select))
    sa.Index(f"ix_stage{mapping.name}_old_id", mapping.c.old_id).create(staging.connection)
    return result.rowcount
