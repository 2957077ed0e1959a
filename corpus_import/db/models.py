from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from corpus_import.db.base import Base, SurrogateId


class Corpus(Base):
    """One node of the corpus hierarchy, positioned by its nested-set interval."""

    __tablename__ = "corpus"
    __table_args__ = (Index("ix_corpus_pre_post", "pre", "post"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pre: Mapped[int] = mapped_column(BigInteger, nullable=False)
    post: Mapped[int] = mapped_column(BigInteger, nullable=False)
    top_level: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    path_name: Mapped[str | None] = mapped_column(Text, nullable=True)


class CorpusAnnotation(Base):
    __tablename__ = "corpus_annotation"

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    corpus_ref: Mapped[int] = mapped_column(ForeignKey("corpus.id", ondelete="CASCADE"), nullable=False, index=True)
    namespace: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


class PrimaryText(Base):
    __tablename__ = "text"

    corpus_ref: Mapped[int] = mapped_column(ForeignKey("corpus.id", ondelete="CASCADE"), primary_key=True)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)


class Node(Base):
    """Token or span node.

    ``left_char``/``right_char`` are character offsets into the primary text,
    ``left_token``/``right_token`` the covered token-index range.
    """

    __tablename__ = "node"
    __table_args__ = (
        Index("ix_node_toplevel_corpus", "toplevel_corpus"),
        Index("ix_node_corpus_ref", "corpus_ref"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    text_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    corpus_ref: Mapped[int] = mapped_column(ForeignKey("corpus.id", ondelete="CASCADE"), nullable=False)
    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, nullable=False)
    layer: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    left_char: Mapped[int | None] = mapped_column(Integer, nullable=True)
    right_char: Mapped[int | None] = mapped_column(Integer, nullable=True)
    token_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    left_token: Mapped[int | None] = mapped_column(Integer, nullable=True)
    right_token: Mapped[int | None] = mapped_column(Integer, nullable=True)
    seg_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    seg_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    span: Mapped[str | None] = mapped_column(Text, nullable=True)
    root: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    continuous: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class NodeAnnotation(Base):
    __tablename__ = "node_annotation"

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    node_ref: Mapped[int] = mapped_column(ForeignKey("node.id", ondelete="CASCADE"), nullable=False, index=True)
    namespace: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


class Component(Base):
    """Edge component; ids are local to their top-level corpus."""

    __tablename__ = "component"

    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    type: Mapped[str | None] = mapped_column(String(1), nullable=True)
    layer: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)


class Rank(Base):
    """Edge occurrence in a component tree, with its own nested-set interval."""

    __tablename__ = "rank"
    __table_args__ = (Index("ix_rank_node_ref", "node_ref"),)

    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    pre: Mapped[int] = mapped_column(BigInteger, nullable=False)
    post: Mapped[int] = mapped_column(BigInteger, nullable=False)
    node_ref: Mapped[int] = mapped_column(BigInteger, nullable=False)
    component_ref: Mapped[int] = mapped_column(BigInteger, nullable=False)
    parent: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    root: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    level: Mapped[int | None] = mapped_column(Integer, nullable=True)


class EdgeAnnotation(Base):
    __tablename__ = "edge_annotation"
    __table_args__ = (Index("ix_edge_annotation_rank", "toplevel_corpus", "rank_ref"),)

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rank_ref: Mapped[int] = mapped_column(BigInteger, nullable=False)
    namespace: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


class CorpusStats(Base):
    """Bookkeeping row per imported top-level corpus; drives the id offsets."""

    __tablename__ = "corpus_stats"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    text: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    max_corpus_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_corpus_pre: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_corpus_post: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_node_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_path: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MediaFile(Base):
    __tablename__ = "media_files"

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    corpus_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)


class ExampleQuery(Base):
    __tablename__ = "example_queries"

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    example_query: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    corpus_ref: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


class ResolverEntry(Base):
    __tablename__ = "resolver_vis_map"

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    corpus: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    version: Mapped[str | None] = mapped_column(String(128), nullable=True)
    namespace: Mapped[str | None] = mapped_column(String(256), nullable=True)
    element: Mapped[str | None] = mapped_column(String(32), nullable=True)
    vis_type: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    visibility: Mapped[str] = mapped_column(String(32), nullable=False, default="hidden")
    order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mappings: Mapped[str | None] = mapped_column(Text, nullable=True)


class CorpusAlias(Base):
    __tablename__ = "corpus_alias"
    __table_args__ = (UniqueConstraint("alias", "corpus_ref", name="uq_corpus_alias_alias_corpus"),)

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    alias: Mapped[str] = mapped_column(String(512), nullable=False)
    corpus_ref: Mapped[int] = mapped_column(ForeignKey("corpus.id", ondelete="CASCADE"), nullable=False)


class AnnotationCategory(Base):
    """Distinct annotation keys (namespace, name) of each top-level corpus."""

    __tablename__ = "annotation_category"
    __table_args__ = (
        UniqueConstraint("toplevel_corpus", "namespace", "name", name="uq_annotation_category_corpus_key"),
    )

    id: Mapped[int] = mapped_column(SurrogateId, primary_key=True, autoincrement=True)
    toplevel_corpus: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    namespace: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
