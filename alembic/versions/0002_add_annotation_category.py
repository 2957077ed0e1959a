"""Add annotation_category table

Revision ID: 0002_add_annotation_category
Revises: 0001_initial
Create Date: 2026-10-19

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0002_add_annotation_category"
down_revision: str | None = "0001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "annotation_category",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("toplevel_corpus", sa.BigInteger(), nullable=False),
        sa.Column("namespace", sa.String(length=256), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("toplevel_corpus", "namespace", "name", name="uq_annotation_category_corpus_key"),
    )
    op.create_index(
        "ix_annotation_category_toplevel_corpus",
        "annotation_category",
        ["toplevel_corpus"],
    )


def downgrade() -> None:
    op.drop_index("ix_annotation_category_toplevel_corpus", table_name="annotation_category")
    op.drop_table("annotation_category")
