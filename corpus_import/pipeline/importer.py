"""Corpus import orchestration.

Stage order
-----------
1. detect format            (FormatError before the database is touched)
2. staging area             create + bulk load of every table file
3. transform steps          fixed sequence for the detected format
4. offsets + node mapping   place the corpus in the shared id space
5. conflict resolution      abort, or delete the existing corpus on overwrite
6. external data            register media, rewrite marker annotations
7. target insert            corpus tree, graph, bookkeeping, side tables
8. derived tables           annotation summary, annotation keys, facts
9. drop staging, commit     then media placement and corpus configuration

Stages 2-9 run in one transaction on one connection.  Any failure rolls it
back, which also removes the staging tables and leaves the target schema as it
was.  Cancellation is checked before every stage and wired to the engine's
statement cancellation while a stage runs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, TypeVar

import sqlalchemy as sa
import yaml
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from corpus_import.core.constants import IMPORTED_TABLES
from corpus_import.core.errors import CancelledError, CorpusImportError, DatabaseAccessError
from corpus_import.core.logging import import_log_context
from corpus_import.core.settings import Settings, get_settings
from corpus_import.db import models
from corpus_import.db.repositories import CorpusAliasRepository, CorpusStatsRepository
from corpus_import.db.session import get_session_factory
from corpus_import.pipeline.context import ImportContext
from corpus_import.pipeline.statement_controller import (
    StatementController,
    engine_interrupt,
    get_statement_controller,
)
from corpus_import.tasks.annotations import create_annotation_category, create_annotations
from corpus_import.tasks.auxiliary import example_queries_file, import_example_queries, import_resolver_table
from corpus_import.tasks.bulk_copy import CopyLoader
from corpus_import.tasks.conflicts import check_and_remove_top_level_corpus, check_top_level_corpus
from corpus_import.tasks.corpus_config import (
    ExampleQueryGenerator,
    NoopExampleQueryGenerator,
    YamlCorpusConfigStore,
    analyze_text_table,
    ensure_default_config,
    resolve_example_query_generation,
)
from corpus_import.tasks.corpus_tree import CorpusInterval, nested_set_paths
from corpus_import.tasks.external_data import ExternalDataImporter, MediaStager
from corpus_import.tasks.facts import create_facts
from corpus_import.tasks.format_detector import FormatVersion, require_format
from corpus_import.tasks.offsets import (
    acquire_import_lock,
    calculate_offsets,
    create_node_id_mapping,
    get_new_toplevel_corpus_id,
)
from corpus_import.tasks.staging import StagingArea
from corpus_import.tasks.steps import step_sequence

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ImportResult:
    corpus_id: int
    name: str
    version: FormatVersion
    replaced_corpus_id: int | None = None
    media_ids: list[int] = field(default_factory=list)
    example_queries_generated: bool = False
    executed_steps: list[str] = field(default_factory=list)


def _diagnostic(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc).strip()


class CorpusImporter:
    """Imports relANNIS directories into the target schema, one transaction each.

    Parameters
    ----------
    session_factory:
        Callable returning a new Session; defaults to the configured factory.
    settings:
        Import settings; defaults to ``get_settings()``.
    controller:
        Cancellation controller; defaults to the process-wide one.
    loader:
        Bulk-copy loader for the staging area; defaults to the driver's.
    config_store:
        Corpus configuration store; defaults to a YAML store in
        ``settings.corpus_config_dir``.
    example_query_generator:
        Invoked after commit when example queries are to be generated.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        settings: Settings | None = None,
        controller: StatementController | None = None,
        loader: CopyLoader | None = None,
        config_store: YamlCorpusConfigStore | None = None,
        example_query_generator: ExampleQueryGenerator | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.controller = controller or get_statement_controller()
        self.loader = loader
        self.config_store = config_store or YamlCorpusConfigStore(self.settings.corpus_config_dir)
        self.example_query_generator = example_query_generator or NoopExampleQueryGenerator()

    def import_corpora(
        self, paths: list[str | Path], *, alias: str | None = None, overwrite: bool = False
    ) -> list[ImportResult]:
        return [self.import_corpus(path, alias=alias, overwrite=overwrite) for path in paths]

    def import_corpus(self, path: str | Path, *, alias: str | None = None, overwrite: bool = False) -> ImportResult:
        # a cancel issued while no import was running targets nothing
        self.controller.reset()
        import_dir = Path(path).resolve()
        version = require_format(import_dir)
        generate_examples = resolve_example_query_generation(
            self.settings.generate_example_queries,
            example_queries_file(import_dir, version).is_file(),
        )

        with import_log_context(import_dir.name), self.session_factory() as session:
            staging = StagingArea(
                session.connection(),
                version,
                temporary=self.settings.temporary_staging_area,
                keep=self.settings.keep_staging_area,
                loader=self.loader,
            )
            ctx = ImportContext(
                session=session,
                settings=self.settings,
                controller=self.controller,
                import_dir=import_dir,
                version=version,
                staging=staging,
                overwrite=overwrite,
                alias=alias,
            )
            stager = MediaStager(self.settings.data_dir, ctx.import_id)
            logger.info("Importing %s (format %s, overwrite=%s)", import_dir, version.value, overwrite)
            try:
                self._run(ctx, stager)
                self._step(ctx, "commit", session.commit)
            except Exception as exc:
                logger.error("Import of %s failed at step %s: %s", import_dir, ctx.current_step, exc)
                session.rollback()
                stager.discard()
                self.controller.reset()
                if isinstance(exc, SQLAlchemyError):
                    raise DatabaseAccessError(f"step {ctx.current_step} failed", _diagnostic(exc)) from exc
                raise

            stager.publish(cancel_requested=self.controller.cancelled)
            self.controller.reset()
            try:
                generated = self._after_commit(session, ctx, generate_examples)
            except (OSError, ValueError, yaml.YAMLError, SQLAlchemyError) as exc:
                # the corpus itself is already committed
                logger.error("Post-import work for corpus %s failed: %s", ctx.toplevel_name, exc)
                session.rollback()
                generated = False

        logger.info("Imported corpus %s with id %d", ctx.toplevel_name, ctx.toplevel_id)
        return ImportResult(
            corpus_id=ctx.toplevel_id,
            name=ctx.toplevel_name,
            version=version,
            replaced_corpus_id=ctx.replaced_corpus_id,
            media_ids=ctx.media_ids,
            example_queries_generated=generated,
            executed_steps=list(ctx.executed_steps),
        )

    def _step(self, ctx: ImportContext, name: str, fn: Callable[..., T], *args, **kwargs) -> T:
        ctx.current_step = name
        ctx.checkpoint(name)
        logger.debug("Step %s", name)
        try:
            with self.controller.track(name, engine_interrupt(ctx.connection)):
                result = fn(*args, **kwargs)
        except (SQLAlchemyError, DatabaseAccessError) as exc:
            if self.controller.cancelled:
                raise CancelledError(name) from exc
            if isinstance(exc, CorpusImportError):
                raise
            raise DatabaseAccessError(f"step {name} failed", _diagnostic(exc)) from exc
        ctx.executed_steps.append(name)
        return result

    def _run(self, ctx: ImportContext, stager: MediaStager) -> None:
        staging = ctx.staging
        connection = ctx.connection
        settings = self.settings
        suffix = ctx.version.file_suffix

        self._step(ctx, "acquire_import_lock", acquire_import_lock, connection)
        self._step(ctx, "create_staging_area", staging.create)
        for table in IMPORTED_TABLES:
            self._step(ctx, f"bulk_load_{table}", staging.bulk_load, table, ctx.import_dir / f"{table}{suffix}")

        for transform in step_sequence(ctx.version):
            self._step(ctx, transform.name, transform, ctx)

        staged_corpora = self._step(ctx, "read_corpus_tree", self._staged_corpora, staging)
        top = next(corpus for corpus in staged_corpora if corpus.top_level)
        ctx.toplevel_name = top.name
        ctx.corpus_paths = nested_set_paths(
            CorpusInterval(c.id, c.name, c.pre, c.post) for c in staged_corpora
        )

        ctx.offsets = self._step(ctx, "calculate_offsets", calculate_offsets, connection)
        ctx.toplevel_id = get_new_toplevel_corpus_id(staging, ctx.offsets)
        self._step(ctx, "create_node_id_mapping", create_node_id_mapping, staging, ctx.offsets)

        if ctx.overwrite:
            ctx.replaced_corpus_id = self._step(
                ctx, "remove_conflicting_corpus", check_and_remove_top_level_corpus, connection, ctx.toplevel_name
            )
        else:
            self._step(ctx, "check_conflicting_corpus", check_top_level_corpus, connection, ctx.toplevel_name)

        importer = ExternalDataImporter(ctx.session, staging, stager, settings.mime_type_mapping)
        ctx.media_ids = self._step(
            ctx, "import_external_data", importer.run, ctx.import_dir, ctx.toplevel_id, ctx.toplevel_name, ctx.corpus_paths
        )

        self._step(ctx, "insert_corpus", self._insert_corpus, ctx)
        self._step(ctx, "compute_corpus_stats", self._insert_corpus_stats, ctx)
        self._step(
            ctx, "import_resolver_table", import_resolver_table, ctx.session, ctx.import_dir, ctx.version, ctx.toplevel_name
        )
        self._step(
            ctx, "import_example_queries", import_example_queries, ctx.session, ctx.import_dir, ctx.version, ctx.toplevel_id
        )
        if ctx.alias:
            self._step(ctx, "add_corpus_alias", self._add_alias, ctx)

        self._step(ctx, "create_annotations", create_annotations, connection, ctx.toplevel_id)
        self._step(ctx, "create_annotation_category", create_annotation_category, connection, ctx.toplevel_id)
        self._step(
            ctx,
            "create_facts",
            create_facts,
            connection,
            ctx.toplevel_id,
            statistics_target=settings.facts_statistics_target,
            adjust_distinct=settings.adjust_distinct_left_right_token,
        )
        self._step(ctx, "drop_staging_area", staging.drop)

    @staticmethod
    def _staged_corpora(staging: StagingArea) -> list[sa.Row]:
        corpus = staging.table("corpus")
        return staging.connection.execute(
            sa.select(corpus.c.id, corpus.c.name, corpus.c.pre, corpus.c.post, corpus.c.top_level).order_by(corpus.c.pre)
        ).all()

    def _insert_corpus(self, ctx: ImportContext) -> None:
        """Copy the staged rows into the target tables, shifted by the offsets."""
        conn = ctx.connection
        t = ctx.staging.table
        offsets = ctx.offsets
        corpus_base, post_base = offsets.corpus_id_base, offsets.corpus_post_base
        toplevel = sa.literal(ctx.toplevel_id, sa.BigInteger)
        mapping = t("nodeidmapping")
        corpus, node, rank = t("corpus"), t("node"), t("rank")
        annotation, text = t("corpus_annotation"), t("text")
        node_annotation, component, edge_annotation = t("node_annotation"), t("component"), t("edge_annotation")

        inserts = [
            (
                models.Corpus,
                ["id", "name", "type", "version", "pre", "post", "top_level"],
                sa.select(
                    corpus.c.id + corpus_base,
                    corpus.c.name,
                    corpus.c["type"],
                    corpus.c.version,
                    corpus.c.pre + post_base,
                    corpus.c.post + post_base,
                    corpus.c.top_level,
                ),
            ),
            (
                models.CorpusAnnotation,
                ["corpus_ref", "namespace", "name", "value"],
                sa.select(annotation.c.corpus_ref + corpus_base, annotation.c.namespace, annotation.c.name, annotation.c.value),
            ),
            (
                models.PrimaryText,
                ["corpus_ref", "id", "name", "text"],
                sa.select(text.c.corpus_ref + corpus_base, text.c.id, text.c.name, text.c.text),
            ),
            (
                models.Node,
                [
                    "id", "text_ref", "corpus_ref", "toplevel_corpus", "layer", "name", "left_char", "right_char",
                    "token_index", "left_token", "right_token", "seg_index", "seg_name", "span", "root", "continuous",
                ],
                sa.select(
                    mapping.c.new_id,
                    node.c.text_ref,
                    node.c.corpus_ref + corpus_base,
                    toplevel,
                    node.c.layer,
                    node.c.name,
                    node.c.left_char,
                    node.c.right_char,
                    node.c.token_index,
                    node.c.left_token,
                    node.c.right_token,
                    node.c.seg_index,
                    node.c.seg_name,
                    node.c.span,
                    node.c.root,
                    node.c.continuous,
                ).select_from(node.join(mapping, mapping.c.old_id == node.c.id)),
            ),
            (
                models.NodeAnnotation,
                ["node_ref", "namespace", "name", "value"],
                sa.select(
                    mapping.c.new_id, node_annotation.c.namespace, node_annotation.c.name, node_annotation.c.value
                ).select_from(node_annotation.join(mapping, mapping.c.old_id == node_annotation.c.node_ref)),
            ),
            (
                models.Component,
                ["toplevel_corpus", "id", "type", "layer", "name"],
                sa.select(toplevel, component.c.id, component.c["type"], component.c.layer, component.c.name),
            ),
            (
                models.Rank,
                ["toplevel_corpus", "id", "pre", "post", "node_ref", "component_ref", "parent", "root", "level"],
                sa.select(
                    toplevel,
                    rank.c.id,
                    rank.c.pre,
                    rank.c.post,
                    mapping.c.new_id,
                    rank.c.component_ref,
                    rank.c.parent,
                    rank.c.root,
                    rank.c.level,
                ).select_from(rank.join(mapping, mapping.c.old_id == rank.c.node_ref)),
            ),
            (
                models.EdgeAnnotation,
                ["toplevel_corpus", "rank_ref", "namespace", "name", "value"],
                sa.select(
                    toplevel, edge_annotation.c.rank_ref, edge_annotation.c.namespace, edge_annotation.c.name, edge_annotation.c.value
                ),
            ),
        ]
        for model, columns, select in inserts:
            result = conn.execute(sa.insert(model.__table__).from_select(columns, select))
            logger.info("Inserted %d rows into %s", result.rowcount, model.__tablename__)

        target = models.Corpus.__table__
        conn.execute(
            sa.update(target)
            .where(target.c.id == sa.bindparam("corpus_id"))
            .values(path_name=sa.bindparam("path")),
            [
                {"corpus_id": corpus_id + corpus_base, "path": path}
                for corpus_id, path in ctx.corpus_paths.items()
            ],
        )

    def _insert_corpus_stats(self, ctx: ImportContext) -> None:
        conn = ctx.connection
        t = ctx.staging.table
        corpus, node, text = t("corpus"), t("node"), t("text")
        offsets = ctx.offsets
        bounds = conn.execute(
            sa.select(sa.func.max(corpus.c.id), sa.func.max(corpus.c.pre), sa.func.max(corpus.c.post))
        ).one()
        max_node = conn.execute(sa.select(sa.func.max(node.c.id))).scalar()
        tokens = conn.execute(
            sa.select(sa.func.count()).select_from(node).where(node.c.token_index.is_not(None))
        ).scalar_one()
        texts = conn.execute(sa.select(sa.func.count()).select_from(text)).scalar_one()

        CorpusStatsRepository(ctx.session).create(
            id=ctx.toplevel_id,
            name=ctx.toplevel_name,
            text=texts,
            tokens=tokens,
            max_corpus_id=bounds[0] + offsets.corpus_id_base,
            max_corpus_pre=bounds[1] + offsets.corpus_post_base,
            max_corpus_post=bounds[2] + offsets.corpus_post_base,
            max_node_id=(max_node if max_node is not None else -1) + offsets.node_id_base,
            source_path=str(ctx.import_dir),
        )

    def _add_alias(self, ctx: ImportContext) -> None:
        CorpusAliasRepository(ctx.session).create(alias=ctx.alias, corpus_ref=ctx.toplevel_id)

    def _after_commit(self, session: Session, ctx: ImportContext, generate_examples: bool) -> bool:
        ensure_default_config(self.config_store, ctx.toplevel_name)
        analyze_text_table(session, self.config_store, ctx.toplevel_id, ctx.toplevel_name)
        if generate_examples:
            added = self.example_query_generator.generate(session, ctx.toplevel_id)
            logger.info("Generated %d example queries for %s", added, ctx.toplevel_name)
        session.commit()
        return generate_examples
