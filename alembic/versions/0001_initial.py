"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_surrogate_id = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "corpus",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("version", sa.String(length=128), nullable=True),
        sa.Column("pre", sa.BigInteger(), nullable=False),
        sa.Column("post", sa.BigInteger(), nullable=False),
        sa.Column("top_level", sa.Boolean(), nullable=False),
        sa.Column("path_name", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_corpus_pre_post", "corpus", ["pre", "post"])

    op.create_table(
        "corpus_annotation",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("corpus_ref", sa.BigInteger(), nullable=False),
        sa.Column("namespace", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["corpus_ref"], ["corpus.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_corpus_annotation_corpus_ref", "corpus_annotation", ["corpus_ref"])

    op.create_table(
        "text",
        sa.Column("corpus_ref", sa.BigInteger(), nullable=False),
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["corpus_ref"], ["corpus.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("corpus_ref", "id"),
    )

    op.create_table(
        "node",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("text_ref", sa.Integer(), nullable=True),
        sa.Column("corpus_ref", sa.BigInteger(), nullable=False),
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("layer", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("left_char", sa.Integer(), nullable=True),
        sa.Column("right_char", sa.Integer(), nullable=True),
        sa.Column("token_index", sa.Integer(), nullable=True),
        sa.Column("left_token", sa.Integer(), nullable=True),
        sa.Column("right_token", sa.Integer(), nullable=True),
        sa.Column("seg_index", sa.Integer(), nullable=True),
        sa.Column("seg_name", sa.String(length=256), nullable=True),
        sa.Column("span", sa.Text(), nullable=True),
        sa.Column("root", sa.Boolean(), nullable=True),
        sa.Column("continuous", sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(["corpus_ref"], ["corpus.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_node_toplevel_corpus", "node", ["toplevel_corpus"])
    op.create_index("ix_node_corpus_ref", "node", ["corpus_ref"])

    op.create_table(
        "node_annotation",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("node_ref", sa.BigInteger(), nullable=False),
        sa.Column("namespace", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["node_ref"], ["node.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_node_annotation_node_ref", "node_annotation", ["node_ref"])

    op.create_table(
        "component",
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("type", sa.String(length=1), nullable=True),
        sa.Column("layer", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.PrimaryKeyConstraint("toplevel_corpus", "id"),
    )

    op.create_table(
        "rank",
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("pre", sa.BigInteger(), nullable=False),
        sa.Column("post", sa.BigInteger(), nullable=False),
        sa.Column("node_ref", sa.BigInteger(), nullable=False),
        sa.Column("component_ref", sa.BigInteger(), nullable=False),
        sa.Column("parent", sa.BigInteger(), nullable=True),
        sa.Column("root", sa.Boolean(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("toplevel_corpus", "id"),
    )
    op.create_index("ix_rank_node_ref", "rank", ["node_ref"])

    op.create_table(
        "edge_annotation",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("rank_ref", sa.BigInteger(), nullable=False),
        sa.Column("namespace", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_edge_annotation_rank", "edge_annotation", ["toplevel_corpus", "rank_ref"])

    op.create_table(
        "corpus_stats",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("text", sa.Integer(), nullable=False),
        sa.Column("tokens", sa.BigInteger(), nullable=False),
        sa.Column("max_corpus_id", sa.BigInteger(), nullable=False),
        sa.Column("max_corpus_pre", sa.BigInteger(), nullable=False),
        sa.Column("max_corpus_post", sa.BigInteger(), nullable=False),
        sa.Column("max_node_id", sa.BigInteger(), nullable=False),
        sa.Column("source_path", sa.String(length=2048), nullable=True),
        sa.Column("imported_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "media_files",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("corpus_path", sa.Text(), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("filename"),
    )
    op.create_index("ix_media_files_toplevel_corpus", "media_files", ["toplevel_corpus"])

    op.create_table(
        "example_queries",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("example_query", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("corpus_ref", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_example_queries_corpus_ref", "example_queries", ["corpus_ref"])

    op.create_table(
        "resolver_vis_map",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("corpus", sa.String(length=512), nullable=False),
        sa.Column("version", sa.String(length=128), nullable=True),
        sa.Column("namespace", sa.String(length=256), nullable=True),
        sa.Column("element", sa.String(length=32), nullable=True),
        sa.Column("vis_type", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=256), nullable=False),
        sa.Column("visibility", sa.String(length=32), nullable=False),
        sa.Column("order", sa.Integer(), nullable=True),
        sa.Column("mappings", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resolver_vis_map_corpus", "resolver_vis_map", ["corpus"])

    op.create_table(
        "corpus_alias",
        sa.Column("id", _surrogate_id, autoincrement=True, nullable=False),
        sa.Column("alias", sa.String(length=512), nullable=False),
        sa.Column("corpus_ref", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["corpus_ref"], ["corpus.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("alias", "corpus_ref", name="uq_corpus_alias_alias_corpus"),
    )


def downgrade() -> None:
    op.drop_table("corpus_alias")
    op.drop_index("ix_resolver_vis_map_corpus", table_name="resolver_vis_map")
    op.drop_table("resolver_vis_map")
    op.drop_index("ix_example_queries_corpus_ref", table_name="example_queries")
    op.drop_table("example_queries")
    op.drop_index("ix_media_files_toplevel_corpus", table_name="media_files")
    op.drop_table("media_files")
    op.drop_table("corpus_stats")
    op.drop_index("ix_edge_annotation_rank", table_name="edge_annotation")
    op.drop_table("edge_annotation")
    op.drop_index("ix_rank_node_ref", table_name="rank")
    op.drop_table("rank")
    op.drop_table("component")
    op.drop_index("ix_node_annotation_node_ref", table_name="node_annotation")
    op.drop_table("node_annotation")
    op.drop_index("ix_node_corpus_ref", table_name="node")
    op.drop_index("ix_node_toplevel_corpus", table_name="node")
    op.drop_table("node")
    op.drop_table("text")
    op.drop_index("ix_corpus_annotation_corpus_ref", table_name="corpus_annotation")
    op.drop_table("corpus_annotation")
    op.drop_index("ix_corpus_pre_post", table_name="corpus")
    op.drop_table("corpus")
