"""Annotation summaries of one imported corpus.

``annotations_<corpus id>`` lists every distinct annotation of the corpus with
the number of times it occurs:

- node annotations (``type = 'node'``, ``subtype = 'n'``)
- edge annotations (``type = 'edge'``, ``subtype`` the component type, with
  the component's namespace and name)
- segmentation names (``type = 'segmentation'``, ``subtype = 's'``), counted
  over the nodes of each segmentation

``annotation_category`` then receives the distinct node and edge annotation
keys of the corpus.  Both are built from the target tables after the corpus
rows are inserted, and are dropped with the corpus.
"""
from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from corpus_import.core.constants import ANNOTATIONS_TABLE_TEMPLATE
from corpus_import.db import models
from corpus_import.db.base import SurrogateId

logger = logging.getLogger(__name__)

_COLUMNS = (
    "toplevel_corpus",
    "namespace",
    "name",
    "value",
    "occurrences",
    "type",
    "subtype",
    "edge_namespace",
    "edge_name",
)


def annotations_table_name(corpus_id: int) -> str:
    return ANNOTATIONS_TABLE_TEMPLATE.format(corpus_id=corpus_id)


def annotations_table(corpus_id: int) -> sa.Table:
    name = annotations_table_name(corpus_id)
    table = sa.Table(
        name,
        sa.MetaData(),
        sa.Column("id", SurrogateId, primary_key=True, autoincrement=True),
        sa.Column("toplevel_corpus", sa.BigInteger, nullable=False),
        sa.Column("namespace", sa.String(256)),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("value", sa.Text),
        sa.Column("occurrences", sa.BigInteger, nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("subtype", sa.String(1)),
        sa.Column("edge_namespace", sa.String(256)),
        sa.Column("edge_name", sa.String(256)),
    )
    sa.Index(f"ix_{name}_name_value", table.c.name, table.c.value)
    sa.Index(f"ix_{name}_type_namespace_name", table.c.type, table.c.namespace, table.c.name)
    return table


def _node_annotations(corpus_id: int) -> sa.Select:
    node = models.Node.__table__
    annotation = models.NodeAnnotation.__table__
    return (
        sa.select(
            sa.literal(corpus_id, sa.BigInteger),
            annotation.c.namespace,
            annotation.c.name,
            annotation.c.value,
            sa.func.count(),
            sa.literal("node"),
            sa.literal("n"),
            sa.null().label("edge_namespace"),
            sa.null().label("edge_name"),
        )
        .select_from(annotation.join(node, node.c.id == annotation.c.node_ref))
        .where(node.c.toplevel_corpus == corpus_id)
        .group_by(annotation.c.namespace, annotation.c.name, annotation.c.value)
    )


def _edge_annotations(corpus_id: int) -> sa.Select:
    annotation = models.EdgeAnnotation.__table__
    rank = models.Rank.__table__
    component = models.Component.__table__
    joined = annotation.join(
        rank, sa.and_(rank.c.toplevel_corpus == annotation.c.toplevel_corpus, rank.c.id == annotation.c.rank_ref)
    ).join(
        component,
        sa.and_(component.c.toplevel_corpus == rank.c.toplevel_corpus, component.c.id == rank.c.component_ref),
    )
    return (
        sa.select(
            sa.literal(corpus_id, sa.BigInteger),
            annotation.c.namespace,
            annotation.c.name,
            annotation.c.value,
            sa.func.count(),
            sa.literal("edge"),
            component.c.type.label("subtype"),
            component.c.layer.label("edge_namespace"),
            component.c.name.label("edge_name"),
        )
        .select_from(joined)
        .where(annotation.c.toplevel_corpus == corpus_id)
        .group_by(
            annotation.c.namespace,
            annotation.c.name,
            annotation.c.value,
            component.c.type,
            component.c.layer,
            component.c.name,
        )
    )


def _segmentations(corpus_id: int) -> sa.Select:
    node = models.Node.__table__
    return (
        sa.select(
            sa.literal(corpus_id, sa.BigInteger),
            sa.null().label("namespace"),
            node.c.seg_name,
            sa.null().label("value"),
            sa.func.count(),
            sa.literal("segmentation"),
            sa.literal("s"),
            sa.null().label("edge_namespace"),
            sa.null().label("edge_name"),
        )
        .where(node.c.toplevel_corpus == corpus_id, node.c.seg_name.is_not(None))
        .group_by(node.c.seg_name)
    )


def create_annotations(connection: Connection, corpus_id: int) -> str:
    """Build and index the annotation summary of ``corpus_id``; return its name."""
    table = annotations_table(corpus_id)
    logger.info("Creating annotations table %s", table.name)
    table.create(connection)
    for kind, select in (
        ("node", _node_annotations(corpus_id)),
        ("edge", _edge_annotations(corpus_id)),
        ("segmentation", _segmentations(corpus_id)),
    ):
        result = connection.execute(table.insert().from_select(list(_COLUMNS), select))
        logger.info("Summarized %d distinct %s annotations", result.rowcount, kind)
    return table.name


def create_annotation_category(connection: Connection, corpus_id: int) -> int:
    """Register the distinct node and edge annotation keys of ``corpus_id``."""
    summary = annotations_table(corpus_id)
    category = models.AnnotationCategory.__table__
    keys = (
        sa.select(summary.c.toplevel_corpus, summary.c.namespace, summary.c.name)
        .where(summary.c.type.in_(("node", "edge")))
        .distinct()
    )
    result = connection.execute(
        category.insert().from_select(["toplevel_corpus", "namespace", "name"], keys)
    )
    logger.info("Registered %d annotation categories for corpus %d", result.rowcount, corpus_id)
    return result.rowcount
