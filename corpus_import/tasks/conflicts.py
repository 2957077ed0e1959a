"""Conflict detection and whole-corpus deletion.

A top-level corpus name is unique in the target schema.  An import whose
staged top-level corpus already exists either fails with
``ConflictingCorpusError`` or, with overwrite, deletes the existing corpus in
the import's own transaction before the new rows go in.

Deletion removes every row whose corpus lies inside the top-level corpus's
nested-set interval, the rows keyed by its top-level id, and its facts and
annotations tables.  Media files on disk are left to ``cleanup_data``.
"""
from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from corpus_import.core.constants import ANNOTATIONS_TABLE_TEMPLATE, FACTS_TABLE_TEMPLATE
from corpus_import.core.errors import ConflictingCorpusError
from corpus_import.db import models

logger = logging.getLogger(__name__)


def find_top_level_corpus_id(connection: Connection, name: str) -> int | None:
    corpus = models.Corpus.__table__
    return connection.execute(
        sa.select(corpus.c.id).where(corpus.c.name == name, corpus.c.top_level.is_(True))
    ).scalar()


def check_top_level_corpus(connection: Connection, name: str) -> None:
    if find_top_level_corpus_id(connection, name) is not None:
        raise ConflictingCorpusError(name)


def check_and_remove_top_level_corpus(connection: Connection, name: str) -> int | None:
    """Delete the top-level corpus ``name`` if it exists; return its former id."""
    corpus_id = find_top_level_corpus_id(connection, name)
    if corpus_id is None:
        return None
    logger.info("Overwriting existing top-level corpus %s (id %d)", name, corpus_id)
    delete_corpora(connection, [corpus_id])
    return corpus_id


def delete_corpora(connection: Connection, top_level_ids: list[int]) -> None:
    """Delete top-level corpora with everything below them, children first."""
    corpus = models.Corpus.__table__
    node = models.Node.__table__
    quote = connection.dialect.identifier_preparer.quote

    for corpus_id in top_level_ids:
        top = connection.execute(
            sa.select(corpus.c.name, corpus.c.pre, corpus.c.post).where(
                corpus.c.id == corpus_id, corpus.c.top_level.is_(True)
            )
        ).first()
        if top is None:
            raise ValueError(f"{corpus_id} is not the id of a top-level corpus")

        logger.info("Deleting corpus %s (id %d)", top.name, corpus_id)
        subtree = sa.select(corpus.c.id).where(corpus.c.pre >= top.pre, corpus.c.post <= top.post)
        nodes = sa.select(node.c.id).where(node.c.corpus_ref.in_(subtree))

        for template in (FACTS_TABLE_TEMPLATE, ANNOTATIONS_TABLE_TEMPLATE):
            connection.exec_driver_sql(f"DROP TABLE IF EXISTS {quote(template.format(corpus_id=corpus_id))}")
        statements = [
            sa.delete(models.EdgeAnnotation.__table__).where(models.EdgeAnnotation.toplevel_corpus == corpus_id),
            sa.delete(models.Rank.__table__).where(models.Rank.toplevel_corpus == corpus_id),
            sa.delete(models.Component.__table__).where(models.Component.toplevel_corpus == corpus_id),
            sa.delete(models.NodeAnnotation.__table__).where(models.NodeAnnotation.node_ref.in_(nodes)),
            sa.delete(node).where(node.c.corpus_ref.in_(subtree)),
            sa.delete(models.PrimaryText.__table__).where(models.PrimaryText.corpus_ref.in_(subtree)),
            sa.delete(models.CorpusAnnotation.__table__).where(models.CorpusAnnotation.corpus_ref.in_(subtree)),
            sa.delete(models.CorpusAlias.__table__).where(models.CorpusAlias.corpus_ref == corpus_id),
            sa.delete(models.ExampleQuery.__table__).where(models.ExampleQuery.corpus_ref == corpus_id),
            sa.delete(models.ResolverEntry.__table__).where(models.ResolverEntry.corpus == top.name),
            sa.delete(models.MediaFile.__table__).where(models.MediaFile.toplevel_corpus == corpus_id),
            sa.delete(models.AnnotationCategory.__table__).where(models.AnnotationCategory.toplevel_corpus == corpus_id),
            sa.delete(models.CorpusStats.__table__).where(models.CorpusStats.id == corpus_id),
            sa.delete(corpus).where(corpus.c.pre >= top.pre, corpus.c.post <= top.post),
        ]
        for statement in statements:
            connection.execute(statement)
