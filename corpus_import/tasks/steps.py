"""Transform step library.

Each step is a named function of the staging-table state of one import.  It
reads staging tables and writes derived columns or rows into them; no step
touches the target schema.  Steps are registered with ``@step`` and sequenced
per format version by ``STEP_SEQUENCES``.  The sequence is fixed: later steps
rely on the columns earlier ones derive.

Steps are written with SQLAlchemy Core so the same statements run on
PostgreSQL and on SQLite.  Planner-only work (ANALYZE, primary keys) runs on
PostgreSQL alone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import sqlalchemy as sa

from corpus_import.core.constants import DOCUMENT_TYPE
from corpus_import.core.errors import FormatError
from corpus_import.tasks.format_detector import FormatVersion

if TYPE_CHECKING:
    from corpus_import.pipeline.context import ImportContext

logger = logging.getLogger(__name__)

# Component types whose edges define which tokens a span covers.
_COVERAGE_COMPONENT_TYPES = ("c", "d")


@dataclass(frozen=True)
class TransformStep:
    name: str
    description: str
    fn: Callable[[ImportContext], None]

    def __call__(self, ctx: ImportContext) -> None:
        self.fn(ctx)


_REGISTRY: dict[str, TransformStep] = {}


def step(name: str, description: str):
    """Register the decorated function as the transform step ``name``."""

    def decorator(fn: Callable[[ImportContext], None]) -> Callable[[ImportContext], None]:
        if name in _REGISTRY:
            raise ValueError(f"transform step {name!r} is already registered")
        _REGISTRY[name] = TransformStep(name=name, description=description, fn=fn)
        return fn

    return decorator


def get_step(name: str) -> TransformStep:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise ValueError(f"unknown transform step {name!r}") from None


# ---------------------------------------------------------------------------
# Indexes and planner statistics
# ---------------------------------------------------------------------------

_STAGING_INDEXES: dict[str, tuple[tuple[str, ...], ...]] = {
    "corpus": (("id",), ("pre", "post")),
    "text": (("corpus_ref", "id"),),
    "node": (("id",), ("corpus_ref",), ("text_ref",), ("token_index",)),
    "node_annotation": (("node_ref",),),
    "component": (("id",),),
    "rank": (("id",), ("node_ref",), ("component_ref", "pre", "post"), ("parent",)),
    "edge_annotation": (("rank_ref",),),
}


@step("create_staging_indexes", "index the join columns of the staging tables")
def create_staging_indexes(ctx: ImportContext) -> None:
    staging = ctx.staging
    if staging.indexed:
        return
    for name, column_sets in _STAGING_INDEXES.items():
        table = staging.table(name)
        for columns in column_sets:
            index = sa.Index(f"ix_stage{table.name}_{'_'.join(columns)}", *(table.c[column] for column in columns))
            index.create(ctx.connection)
    staging.indexed = True


@step("analyze_staging", "refresh planner statistics of the staging tables")
def analyze_staging(ctx: ImportContext) -> None:
    if not ctx.staging.is_postgres:
        logger.debug("Skipping ANALYZE of staging tables on %s", ctx.connection.dialect.name)
        return
    quote = ctx.connection.dialect.identifier_preparer.quote
    for table in ctx.staging.tables.values():
        ctx.connection.exec_driver_sql(f"ANALYZE {quote(table.name)}")


# ---------------------------------------------------------------------------
# Corpus hierarchy
# ---------------------------------------------------------------------------


@step("compute_top_level_corpus", "mark the corpus that no other corpus interval contains")
def compute_top_level_corpus(ctx: ImportContext) -> None:
    corpus = ctx.staging.table("corpus")
    enclosing = corpus.alias("enclosing")
    enclosed = (
        sa.select(enclosing.c.id)
        .where(enclosing.c.pre < corpus.c.pre, enclosing.c.post > corpus.c.post)
        .exists()
    )
    ctx.connection.execute(sa.update(corpus).values(top_level=sa.not_(enclosed)))


@step("adjust_text_id", "attach each text to the corpus of the nodes that reference it")
def adjust_text_id(ctx: ImportContext) -> None:
    text = ctx.staging.table("text")
    node = ctx.staging.table("node")
    corpus = ctx.staging.table("corpus")
    owner = sa.select(sa.func.min(node.c.corpus_ref)).where(node.c.text_ref == text.c.id).scalar_subquery()
    ctx.connection.execute(sa.update(text).values(corpus_ref=owner))

    # texts no token points at belong to the top-level corpus
    top_level = sa.select(sa.func.max(corpus.c.id)).where(corpus.c.top_level.is_(True)).scalar_subquery()
    ctx.connection.execute(sa.update(text).where(text.c.corpus_ref.is_(None)).values(corpus_ref=top_level))


@step("add_document_name_metadata", "add an annis:doc annotation naming every document")
def add_document_name_metadata(ctx: ImportContext) -> None:
    corpus = ctx.staging.table("corpus")
    annotation = ctx.staging.table("corpus_annotation")
    present = (
        sa.select(annotation.c.corpus_ref)
        .where(
            annotation.c.corpus_ref == corpus.c.id,
            annotation.c.namespace == "annis",
            annotation.c.name == "doc",
        )
        .exists()
    )
    select = sa.select(
        corpus.c.id,
        sa.literal("annis").label("namespace"),
        sa.literal("doc").label("annotation_name"),
        corpus.c.name,
    ).where(corpus.c.type == DOCUMENT_TYPE, sa.not_(present))
    ctx.connection.execute(
        annotation.insert().from_select(["corpus_ref", "namespace", "name", "value"], select)
    )


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


def _covered_tokens(ctx: ImportContext, aggregate):
    """Correlated subquery aggregating the token indexes a span node covers.

    A token is covered when one of its ranks lies inside a rank of the span
    node in the same coverage or dominance component.
    """
    node = ctx.staging.table("node")
    rank = ctx.staging.table("rank")
    component = ctx.staging.table("component")
    span_rank = rank.alias("span_rank")
    token_rank = rank.alias("token_rank")
    token = node.alias("covered_token")
    joined = (
        span_rank.join(
            token_rank,
            sa.and_(
                token_rank.c.component_ref == span_rank.c.component_ref,
                token_rank.c.pre > span_rank.c.pre,
                token_rank.c.post < span_rank.c.post,
            ),
        )
        .join(component, component.c.id == span_rank.c.component_ref)
        .join(token, token.c.id == token_rank.c.node_ref)
    )
    return (
        sa.select(aggregate(token.c.token_index))
        .select_from(joined)
        .where(
            span_rank.c.node_ref == node.c.id,
            component.c.type.in_(_COVERAGE_COMPONENT_TYPES),
            token.c.token_index.is_not(None),
        )
        .scalar_subquery()
    )


@step("compute_left_right_token", "derive the covered token range of every node")
def compute_left_right_token(ctx: ImportContext) -> None:
    node = ctx.staging.table("node")
    conn = ctx.connection
    conn.execute(
        sa.update(node)
        .where(node.c.token_index.is_not(None))
        .values(left_token=node.c.token_index, right_token=node.c.token_index)
    )
    conn.execute(
        sa.update(node)
        .where(node.c.token_index.is_(None))
        .values(
            left_token=_covered_tokens(ctx, sa.func.min),
            right_token=_covered_tokens(ctx, sa.func.max),
        )
    )

    uncovered = conn.execute(
        sa.select(node.c.id, node.c.name).where(node.c.left_token.is_(None)).limit(1)
    ).first()
    if uncovered is not None:
        raise FormatError(f"span node {uncovered.id} ({uncovered.name!r}) covers no token")


@step("compute_continuity", "flag nodes whose covered tokens form one contiguous run")
def compute_continuity(ctx: ImportContext) -> None:
    node = ctx.staging.table("node")
    ctx.connection.execute(
        sa.update(node).where(node.c.token_index.is_not(None)).values(continuous=sa.true())
    )
    covered = _covered_tokens(ctx, lambda column: sa.func.count(sa.distinct(column)))
    ctx.connection.execute(
        sa.update(node)
        .where(node.c.token_index.is_(None))
        .values(
            continuous=sa.case(
                (covered == node.c.right_token - node.c.left_token + 1, sa.true()),
                else_=sa.false(),
            )
        )
    )


@step("compute_span_from_segmentation", "take the covered text of segmentation nodes from their annotation")
def compute_span_from_segmentation(ctx: ImportContext) -> None:
    """Fill ``span`` of segmentation nodes from the annotation named after their segmentation."""
    node = ctx.staging.table("node")
    annotation = ctx.staging.table("node_annotation")
    segment_text = (
        sa.select(sa.func.min(annotation.c.value))
        .where(annotation.c.node_ref == node.c.id, annotation.c.name == node.c.seg_name)
        .scalar_subquery()
    )
    annotated = (
        sa.select(annotation.c.node_ref)
        .where(annotation.c.node_ref == node.c.id, annotation.c.name == node.c.seg_name)
        .exists()
    )
    result = ctx.connection.execute(
        sa.update(node)
        .where(node.c.seg_name.is_not(None), node.c.span.is_(None), annotated)
        .values(span=segment_text)
    )
    logger.info("Set span of %d segmentation nodes", result.rowcount)


@step("add_unique_node_name_appendix", "make node names unique within each corpus")
def add_unique_node_name_appendix(ctx: ImportContext) -> None:
    """Append ``_<node id>`` to every repeated node name but the first.

    The repeated names are read from one snapshot before anything is renamed.
    A suffixed name that is already taken in the corpus gets the suffix again
    until it is free.
    """
    node = ctx.staging.table("node")
    conn = ctx.connection
    numbered = sa.select(
        node.c.id,
        node.c.corpus_ref,
        node.c.name,
        sa.func.row_number()
        .over(partition_by=(node.c.corpus_ref, node.c.name), order_by=node.c.id)
        .label("occurrence"),
    ).subquery("numbered")
    repeated = conn.execute(
        sa.select(numbered.c.id, numbered.c.corpus_ref, numbered.c.name)
        .where(numbered.c.occurrence > 1)
        .order_by(numbered.c.id)
    ).all()
    if not repeated:
        logger.info("Node names are already unique, skipping name repair")
        return

    pending = {row.id: (row.corpus_ref, f"{row.name}_{row.id}") for row in repeated}
    assigned: dict[int, tuple[int, str]] = {}
    while pending:
        candidates = {name for _, name in pending.values()}
        taken = set(
            conn.execute(sa.select(node.c.corpus_ref, node.c.name).where(node.c.name.in_(candidates))).tuples()
        )
        taken.update(assigned.values())
        retry = {}
        for node_id, (corpus_ref, name) in sorted(pending.items()):
            if (corpus_ref, name) in taken:
                retry[node_id] = (corpus_ref, f"{name}_{node_id}")
            else:
                assigned[node_id] = (corpus_ref, name)
                taken.add((corpus_ref, name))
        pending = retry

    conn.execute(
        sa.update(node).where(node.c.id == sa.bindparam("node_id")).values(name=sa.bindparam("new_name")),
        [{"node_id": node_id, "new_name": name} for node_id, (_, name) in sorted(assigned.items())],
    )
    logger.info("Renamed %d nodes with duplicate names", len(assigned))


# ---------------------------------------------------------------------------
# Ranks
# ---------------------------------------------------------------------------


@step("compute_rank_ids", "use the pre-order value as rank id")
def compute_rank_ids(ctx: ImportContext) -> None:
    rank = ctx.staging.table("rank")
    ctx.connection.execute(sa.update(rank).values(id=rank.c.pre))


@step("compute_real_root", "flag ranks without a parent as roots")
def compute_real_root(ctx: ImportContext) -> None:
    rank = ctx.staging.table("rank")
    ctx.connection.execute(
        sa.update(rank).values(root=sa.case((rank.c.parent.is_(None), sa.true()), else_=sa.false()))
    )


@step("compute_level", "derive the depth of every rank below its root")
def compute_level(ctx: ImportContext) -> None:
    rank = ctx.staging.table("rank")
    name = ctx.connection.dialect.identifier_preparer.quote(rank.name)
    ctx.connection.execute(
        sa.text(
            f"""
            WITH RECURSIVE rank_level(id, level) AS (
                SELECT id, 0 FROM {name} WHERE parent IS NULL
                UNION ALL
                SELECT child.id, rank_level.level + 1
                FROM {name} AS child JOIN rank_level ON child.parent = rank_level.id
            )
            UPDATE {name} SET level = rank_level.level
            FROM rank_level
            WHERE rank_level.id = {name}.id
            """
        )
    )
    unreachable = ctx.connection.execute(
        sa.select(rank.c.id).where(rank.c.level.is_(None)).limit(1)
    ).first()
    if unreachable is not None:
        raise FormatError(f"rank {unreachable.id} is not reachable from a root; its component has a cycle")


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


def _orphans(child: sa.Table, column: str, parent: sa.Table, parent_column: str = "id"):
    referenced = sa.select(parent.c[parent_column]).where(parent.c[parent_column] == child.c[column]).exists()
    return sa.select(child.c[column]).where(child.c[column].is_not(None), sa.not_(referenced)).limit(1)


def _duplicates(table: sa.Table, column: str = "id"):
    return sa.select(table.c[column]).group_by(table.c[column]).having(sa.func.count() > 1).limit(1)


_PRIMARY_KEYS = {"corpus": "id", "node": "id", "component": "id", "rank": "id"}


@step("apply_constraints", "check keys, references and the corpus hierarchy of the staging tables")
def apply_constraints(ctx: ImportContext) -> None:
    t = ctx.staging.table
    corpus, node, rank = t("corpus"), t("node"), t("rank")
    checks = [
        (
            "corpus with NULL id, name, pre or post",
            sa.select(corpus.c.id).where(
                sa.or_(
                    corpus.c.id.is_(None),
                    corpus.c.name.is_(None),
                    corpus.c.pre.is_(None),
                    corpus.c.post.is_(None),
                )
            ).limit(1),
        ),
        ("corpus with pre >= post", sa.select(corpus.c.id).where(corpus.c.pre >= corpus.c.post).limit(1)),
        ("node with NULL id or name", sa.select(node.c.id).where(sa.or_(node.c.id.is_(None), node.c.name.is_(None))).limit(1)),
        ("rank with NULL pre or post", sa.select(rank.c.id).where(sa.or_(rank.c.pre.is_(None), rank.c.post.is_(None))).limit(1)),
        ("duplicate corpus id", _duplicates(corpus)),
        ("duplicate node id", _duplicates(node)),
        ("duplicate component id", _duplicates(t("component"))),
        ("duplicate rank id", _duplicates(rank)),
        ("corpus annotation without corpus", _orphans(t("corpus_annotation"), "corpus_ref", corpus)),
        ("text without corpus", _orphans(t("text"), "corpus_ref", corpus)),
        ("node without corpus", _orphans(node, "corpus_ref", corpus)),
        ("node annotation without node", _orphans(t("node_annotation"), "node_ref", node)),
        ("rank without node", _orphans(rank, "node_ref", node)),
        ("rank without component", _orphans(rank, "component_ref", t("component"))),
        ("edge annotation without rank", _orphans(t("edge_annotation"), "rank_ref", rank)),
    ]
    for description, query in checks:
        violation = ctx.connection.execute(query).first()
        if violation is not None:
            raise FormatError(f"constraint violation: {description} (value {violation[0]!r})")

    top_level = ctx.connection.execute(
        sa.select(sa.func.count()).select_from(corpus).where(corpus.c.top_level.is_(True))
    ).scalar_one()
    if top_level != 1:
        raise FormatError(f"constraint violation: expected exactly one top-level corpus, found {top_level}")

    if ctx.staging.is_postgres:
        quote = ctx.connection.dialect.identifier_preparer.quote
        for name, column in _PRIMARY_KEYS.items():
            ctx.connection.exec_driver_sql(f"ALTER TABLE {quote(t(name).name)} ADD PRIMARY KEY ({column})")


STEP_SEQUENCES: dict[FormatVersion, tuple[str, ...]] = {
    FormatVersion.V_NEW: (
        "apply_constraints",
        "create_staging_indexes",
        "analyze_staging",
        "compute_real_root",
        "compute_continuity",
        "add_document_name_metadata",
    ),
    FormatVersion.V_MID: (
        "create_staging_indexes",
        "compute_top_level_corpus",
        "compute_rank_ids",
        "analyze_staging",
        "compute_left_right_token",
        "compute_continuity",
        "add_unique_node_name_appendix",
        "adjust_text_id",
        "add_document_name_metadata",
        "compute_real_root",
        "compute_level",
        "compute_span_from_segmentation",
        "apply_constraints",
        "analyze_staging",
    ),
}
STEP_SEQUENCES[FormatVersion.V_OLD] = STEP_SEQUENCES[FormatVersion.V_MID]


def step_sequence(version: FormatVersion) -> list[TransformStep]:
    try:
        names = STEP_SEQUENCES[version]
    except KeyError:
        raise FormatError(f"no transform sequence for format {version.value}") from None
    return [get_step(name) for name in names]
