from sqlalchemy import inspect

from corpus_import.db.base import Base
from corpus_import.db import models  # noqa: F401
from corpus_import.db.session import build_engine


def test_schema_creation_in_sqlite_includes_all_target_tables():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)

    table_names = set(inspect(engine).get_table_names())

    expected = {
        "corpus",
        "corpus_annotation",
        "text",
        "node",
        "node_annotation",
        "component",
        "rank",
        "edge_annotation",
        "corpus_stats",
        "media_files",
        "example_queries",
        "resolver_vis_map",
        "corpus_alias",
        "annotation_category",
    }
    assert expected.issubset(table_names)


def test_graph_tables_are_keyed_by_top_level_corpus():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    inspector = inspect(engine)

    assert inspector.get_pk_constraint("rank")["constrained_columns"] == ["toplevel_corpus", "id"]
    assert inspector.get_pk_constraint("component")["constrained_columns"] == ["toplevel_corpus", "id"]
    assert inspector.get_pk_constraint("text")["constrained_columns"] == ["corpus_ref", "id"]

    node_columns = {column["name"]: column for column in inspector.get_columns("node")}
    assert node_columns["toplevel_corpus"]["nullable"] is False
    assert node_columns["left_token"]["nullable"] is True
    assert "continuous" in node_columns

    stats_columns = {column["name"] for column in inspector.get_columns("corpus_stats")}
    assert {"max_corpus_id", "max_corpus_pre", "max_corpus_post", "max_node_id"} <= stats_columns


def test_ddl_runs_inside_transactions():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    with engine.connect() as conn:
        trans = conn.begin()
        conn.exec_driver_sql("CREATE TABLE scratch (id INTEGER)")
        trans.rollback()
        assert "scratch" not in inspect(conn).get_table_names()
