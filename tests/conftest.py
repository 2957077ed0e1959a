"""Shared fixtures: in-memory SQLite target schema and relANNIS directory builders.

The staging area bulk-loads through the driver's copy protocol, which SQLite
does not have.  ``TabCopyLoader`` reads the same tab-separated files and
inserts the rows through SQLAlchemy instead.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from corpus_import.core.constants import NULL_TOKEN
from corpus_import.core.settings import Settings
from corpus_import.db import models  # noqa: F401
from corpus_import.db.base import Base
from corpus_import.db.session import build_engine
from corpus_import.pipeline.importer import CorpusImporter
from corpus_import.pipeline.statement_controller import StatementController


# ---------------------------------------------------------------------------
# Bulk loading without COPY
# ---------------------------------------------------------------------------


def _coerce(column, value: str):
    if value == NULL_TOKEN:
        return None
    python_type = column.type.python_type
    if python_type is bool:
        return value.lower() in ("t", "true", "1")
    if python_type is int:
        return int(value)
    return value


class TabCopyLoader:
    def __init__(self) -> None:
        self.loaded: list[str] = []

    def copy_into(self, connection, table, columns, source) -> int:
        rows = []
        for line in source.read().decode("utf-8").splitlines():
            if not line:
                continue
            values = line.split("\t")
            rows.append({column: _coerce(table.c[column], value) for column, value in zip(columns, values)})
        if rows:
            connection.execute(table.insert(), rows)
        self.loaded.append(table.name)
        return len(rows)


# ---------------------------------------------------------------------------
# relANNIS directories
# ---------------------------------------------------------------------------


def _cell(value) -> str:
    if value is None:
        return NULL_TOKEN
    if value is True:
        return "t"
    if value is False:
        return "f"
    return str(value)


def write_table(path: Path, rows) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as fh:
        for row in rows:
            fh.write("\t".join(_cell(value) for value in row) + "\n")


_TOKENS = (("tok_1", 0, 3, "Das"), ("tok_2", 4, 7, "ist"), ("tok_3", 8, 11, "gut"))
_POS = ("ART", "VAFIN", "ADJD")


def _write_v33(directory: Path, name: str, text: str, node_annotations: list) -> None:
    (directory / "annis.version").write_text("3.3\n", encoding="utf-8")
    write_table(
        directory / "corpus.annis",
        [(0, name, "CORPUS", None, 0, 3, True), (1, "doc1", "DOCUMENT", None, 1, 2, False)],
    )
    write_table(directory / "corpus_annotation.annis", [(1, "meta", "genre", "news")])
    write_table(directory / "text.annis", [(1, 0, "sText1", text)])
    nodes = [
        (i, 0, 1, "tiger", tok, left, right, i, i, i, None, None, span, False)
        for i, (tok, left, right, span) in enumerate(_TOKENS)
    ]
    nodes.append((3, 0, 1, "tiger", "sent_1", 0, 11, None, 0, 2, None, None, None, True))
    write_table(directory / "node.annis", nodes)
    write_table(directory / "node_annotation.annis", node_annotations)
    write_table(directory / "component.annis", [(0, "c", "tiger", None), (1, "d", "tiger", "edge")])
    write_table(
        directory / "rank.annis",
        [
            (0, 0, 7, 3, 0, None, 0),
            (1, 1, 2, 0, 0, 0, 1),
            (2, 3, 4, 1, 0, 0, 1),
            (3, 5, 6, 2, 0, 0, 1),
            (4, 8, 11, 3, 1, None, 0),
            (5, 9, 10, 0, 1, 4, 1),
        ],
    )
    write_table(directory / "edge_annotation.annis", [(5, "tiger", "func", "OA")])


def _write_old(directory: Path, name: str, text: str, node_annotations: list, node_columns: int) -> None:
    write_table(
        directory / "corpus.tab",
        [(0, name, "CORPUS", None, 0, 3), (1, "doc1", "DOCUMENT", None, 1, 2)],
    )
    write_table(directory / "corpus_annotation.tab", [(1, "meta", "genre", "news")])
    write_table(directory / "text.tab", [(0, "sText1", text)])
    if node_columns == 13:
        nodes = [
            (i, 0, 1, "tiger", tok, left, right, i, None, None, None, True, span)
            for i, (tok, left, right, span) in enumerate(_TOKENS)
        ]
        nodes.append((3, 0, 1, "tiger", "sent_1", 0, 11, None, None, None, None, True, None))
    else:
        nodes = [
            (i, 0, 1, "tiger", tok, left, right, i, True, span)
            for i, (tok, left, right, span) in enumerate(_TOKENS)
        ]
        nodes.append((3, 0, 1, "tiger", "sent_1", 0, 11, None, True, None))
    write_table(directory / "node.tab", nodes)
    write_table(directory / "node_annotation.tab", node_annotations)
    write_table(directory / "component.tab", [(0, "c", "tiger", None), (1, "d", "tiger", "edge")])
    write_table(
        directory / "rank.tab",
        [(0, 7, 3, 0, None), (1, 2, 0, 0, 0), (3, 4, 1, 0, 0), (5, 6, 2, 0, 0), (8, 11, 3, 1, None), (9, 10, 0, 1, 8)],
    )
    write_table(directory / "edge_annotation.tab", [(9, "tiger", "func", "OA")])


@pytest.fixture()
def make_corpus(tmp_path: Path):
    """Factory writing a small relANNIS corpus: one document, three tokens, one sentence span.

    The sentence dominates the first token through an edge annotated
    ``func=OA``.  Its facts table has six rows.
    """

    def _make(
        version: str = "3.3",
        *,
        name: str = "pcc",
        text: str = "Das ist gut",
        extra_node_annotations: list | None = None,
        ext_files: dict[str, bytes] | None = None,
        example_queries: list | None = None,
        resolver: list | None = None,
        directory: str | None = None,
    ) -> Path:
        target = tmp_path / (directory or f"{name}-{version}")
        target.mkdir(parents=True)
        node_annotations = [(i, "tiger", "pos", pos) for i, pos in enumerate(_POS)]
        node_annotations.append((3, "tiger", "cat", "S"))
        node_annotations.extend(extra_node_annotations or [])

        if version == "3.3":
            _write_v33(target, name, text, node_annotations)
            suffix = ".annis"
        elif version == "3.2":
            _write_old(target, name, text, node_annotations, 13)
            suffix = ".tab"
        elif version == "3.1":
            _write_old(target, name, text, node_annotations, 10)
            suffix = ".tab"
        else:
            raise ValueError(f"no builder for version {version}")

        for relative, payload in (ext_files or {}).items():
            path = target / "ExtData" / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
        if example_queries is not None:
            write_table(target / f"example_queries{suffix}", example_queries)
        if resolver is not None:
            write_table(target / f"resolver_vis_map{suffix}", resolver)
        return target

    return _make


# ---------------------------------------------------------------------------
# Database and importer
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    """In-memory SQLite engine with the target schema created."""
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def loader() -> TabCopyLoader:
    return TabCopyLoader()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        DATA_DIR=str(tmp_path / "media"),
        CORPUS_CONFIG_DIR=str(tmp_path / "corpus_config"),
    )


@pytest.fixture()
def controller() -> StatementController:
    return StatementController()


@pytest.fixture()
def importer(session_factory, settings, controller, loader) -> CorpusImporter:
    return CorpusImporter(
        session_factory=session_factory,
        settings=settings,
        controller=controller,
        loader=loader,
    )
