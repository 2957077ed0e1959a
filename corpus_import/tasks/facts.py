"""Facts materialization: one denormalized table per imported corpus.

``facts_<corpus id>`` joins every node of the corpus with its ranks, their
components, node annotations and edge annotations.  Nodes without ranks or
annotations still get one row (outer joins).  The table is built once per
import and dropped with its corpus; it is never updated in place.

On PostgreSQL the statistics target of the token-position columns is raised
before loading, and after loading the table is analyzed.  Optionally the
planner's distinct-value estimate for ``left_token``/``right_token`` is set
to the average last token index per text.
"""
from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from corpus_import.core.constants import FACTS_TABLE_TEMPLATE
from corpus_import.db import models

logger = logging.getLogger(__name__)

_STATISTICS_COLUMNS = ("left_token", "right_token", "token_index", "seg_index")

_FACTS_INDEXES: tuple[tuple[str, ...], ...] = (
    ("id",),
    ("corpus_ref",),
    ("text_ref", "left_token", "right_token"),
    ("node_annotation_name", "node_annotation_value"),
    ("rank_pre", "rank_post"),
    ("component_id",),
    ("edge_annotation_name", "edge_annotation_value"),
)


def facts_table_name(corpus_id: int) -> str:
    return FACTS_TABLE_TEMPLATE.format(corpus_id=corpus_id)


def _facts_select() -> sa.Select:
    node = models.Node.__table__
    rank = models.Rank.__table__
    component = models.Component.__table__
    node_annotation = models.NodeAnnotation.__table__
    edge_annotation = models.EdgeAnnotation.__table__

    joined = (
        node.outerjoin(rank, sa.and_(rank.c.toplevel_corpus == node.c.toplevel_corpus, rank.c.node_ref == node.c.id))
        .outerjoin(
            component,
            sa.and_(component.c.toplevel_corpus == rank.c.toplevel_corpus, component.c.id == rank.c.component_ref),
        )
        .outerjoin(node_annotation, node_annotation.c.node_ref == node.c.id)
        .outerjoin(
            edge_annotation,
            sa.and_(
                edge_annotation.c.toplevel_corpus == rank.c.toplevel_corpus,
                edge_annotation.c.rank_ref == rank.c.id,
            ),
        )
    )
    return sa.select(
        node.c.id,
        node.c.text_ref,
        node.c.corpus_ref,
        node.c.toplevel_corpus,
        node.c.layer.label("node_namespace"),
        node.c.name.label("node_name"),
        node.c.left_char,
        node.c.right_char,
        node.c.token_index,
        node.c.left_token,
        node.c.right_token,
        node.c.seg_index,
        node.c.seg_name,
        node.c.span,
        node.c.root.label("node_root"),
        node.c.continuous,
        rank.c.id.label("rank_id"),
        rank.c.pre.label("rank_pre"),
        rank.c.post.label("rank_post"),
        rank.c.parent.label("rank_parent"),
        rank.c.root.label("rank_root"),
        rank.c.level.label("rank_level"),
        component.c.id.label("component_id"),
        component.c.type.label("edge_type"),
        component.c.layer.label("edge_namespace"),
        component.c.name.label("edge_name"),
        node_annotation.c.namespace.label("node_annotation_namespace"),
        node_annotation.c.name.label("node_annotation_name"),
        node_annotation.c.value.label("node_annotation_value"),
        edge_annotation.c.namespace.label("edge_annotation_namespace"),
        edge_annotation.c.name.label("edge_annotation_name"),
        edge_annotation.c.value.label("edge_annotation_value"),
    ).select_from(joined)


def _statistics_target(connection: Connection, minimum: int) -> int:
    raw = connection.exec_driver_sql("SHOW default_statistics_target").scalar()
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        logger.warning("Could not parse default_statistics_target %r, using %d", raw, minimum)
        return minimum


def create_facts(
    connection: Connection,
    corpus_id: int,
    *,
    statistics_target: int = 250,
    adjust_distinct: bool = False,
) -> str:
    """Build, index and analyze the facts table of ``corpus_id``; return its name."""
    name = facts_table_name(corpus_id)
    quote = connection.dialect.identifier_preparer.quote
    is_postgres = connection.dialect.name == "postgresql"
    logger.info("Creating facts table %s", name)

    select = _facts_select()
    empty = select.where(sa.false()).compile(dialect=connection.dialect, compile_kwargs={"literal_binds": True})
    connection.exec_driver_sql(f"CREATE TABLE {quote(name)} AS {empty}")

    if is_postgres:
        target = _statistics_target(connection, statistics_target)
        for column in _STATISTICS_COLUMNS:
            connection.exec_driver_sql(
                f"ALTER TABLE {quote(name)} ALTER COLUMN {quote(column)} SET STATISTICS {target:d}"
            )

    columns = [column.name for column in select.selected_columns]
    facts = sa.table(name, *(sa.column(column) for column in columns))
    node = models.Node.__table__
    result = connection.execute(
        sa.insert(facts).from_select(columns, select.where(node.c.toplevel_corpus == corpus_id))
    )
    logger.info("Materialized %d facts rows", result.rowcount)

    for index_columns in _FACTS_INDEXES:
        index_name = f"ix_{name}_{'_'.join(index_columns)}"
        connection.exec_driver_sql(
            f"CREATE INDEX {quote(index_name)} ON {quote(name)} ({', '.join(quote(c) for c in index_columns)})"
        )

    if is_postgres:
        connection.exec_driver_sql(f"ANALYZE {quote(name)}")
        if adjust_distinct:
            adjust_distinct_left_right_token(connection, corpus_id)
    elif adjust_distinct:
        logger.info("Distinct-value override needs PostgreSQL, skipping for %s", connection.dialect.name)
    return name


def adjust_distinct_left_right_token(connection: Connection, corpus_id: int) -> None:
    """Set n_distinct of the token-boundary columns to the average last token per text."""
    name = facts_table_name(corpus_id)
    quote = connection.dialect.identifier_preparer.quote
    facts = sa.table(name, sa.column("corpus_ref"), sa.column("text_ref"), *(sa.column(c) for c in ("left_token", "right_token")))
    logger.info("Adjusting distinct-value estimates of %s", name)
    for column in ("left_token", "right_token"):
        per_text = (
            sa.select(sa.func.max(facts.c[column]).label("last"))
            .group_by(facts.c.corpus_ref, facts.c.text_ref)
            .subquery()
        )
        average = connection.execute(sa.select(sa.func.avg(per_text.c.last))).scalar()
        if average is None:
            continue
        connection.exec_driver_sql(
            f"ALTER TABLE {quote(name)} ALTER COLUMN {quote(column)} SET (n_distinct = {round(average):d})"
        )
    connection.exec_driver_sql(f"ANALYZE {quote(name)}")
