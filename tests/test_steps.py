"""Tests for corpus_import/tasks/steps.py.

Covers:
- registry: duplicate names rejected, unknown names rejected, sequences per version
- compute_top_level_corpus marks only the outermost interval
- compute_left_right_token: tokens and spans, idempotent, uncovered span raises
- compute_continuity for contiguous and gapped spans
- add_unique_node_name_appendix: skipped when unique, renames only repeated names, never onto a taken name
- compute_rank_ids, compute_real_root, compute_level (and cycle detection)
- adjust_text_id and add_document_name_metadata
- compute_span_from_segmentation fills span of segmentation nodes from their annotation
- apply_constraints rejects orphans, duplicates and a missing top-level corpus
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest
import sqlalchemy as sa

from corpus_import.core.errors import FormatError
from corpus_import.tasks import steps
from corpus_import.tasks.format_detector import FormatVersion
from corpus_import.tasks.staging import StagingArea


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def staged(engine, loader):
    """A created staging area on an open transaction, with a context stand-in."""
    with engine.begin() as conn:
        staging = StagingArea(conn, FormatVersion.V_MID, loader=loader)
        staging.create()
        yield SimpleNamespace(staging=staging, connection=conn)


def _insert(ctx, table: str, rows: list[dict]) -> None:
    for row in rows:
        ctx.connection.execute(ctx.staging.table(table).insert(), row)


def _rows(ctx, table: str, *columns: str, order_by: str = "id"):
    t = ctx.staging.table(table)
    return ctx.connection.execute(sa.select(*(t.c[c] for c in columns)).order_by(t.c[order_by])).all()


def _node(node_id, name, token_index=None, corpus_ref=1, text_ref=0):
    return {
        "id": node_id,
        "text_ref": text_ref,
        "corpus_ref": corpus_ref,
        "layer": "tiger",
        "name": name,
        "token_index": token_index,
    }


def _rank(pre, post, node_ref, component_ref=0, parent=None, rank_id=None):
    return {
        "id": rank_id if rank_id is not None else pre,
        "pre": pre,
        "post": post,
        "node_ref": node_ref,
        "component_ref": component_ref,
        "parent": parent,
    }


def _graph(ctx, span_children=(0, 1, 2)) -> None:
    """Three tokens and one span covering ``span_children`` through a coverage component."""
    _insert(ctx, "corpus", [
        {"id": 0, "name": "pcc", "type": "CORPUS", "pre": 0, "post": 3, "top_level": True},
        {"id": 1, "name": "doc1", "type": "DOCUMENT", "pre": 1, "post": 2, "top_level": False},
    ])
    _insert(ctx, "node", [_node(i, f"tok_{i}", token_index=i) for i in range(3)] + [_node(3, "span")])
    _insert(ctx, "component", [{"id": 0, "type": "c", "layer": "tiger"}])
    ranks = [_rank(0, 2 * len(span_children) + 1, 3)]
    for position, token in enumerate(span_children):
        ranks.append(_rank(2 * position + 1, 2 * position + 2, token, parent=0))
    _insert(ctx, "rank", ranks)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            steps.step("compute_level", "again")(lambda ctx: None)

    def test_unknown_step_rejected(self):
        with pytest.raises(ValueError, match="unknown transform step"):
            steps.get_step("no_such_step")

    def test_every_sequenced_step_is_registered(self):
        registered = set(steps._REGISTRY)
        for names in steps.STEP_SEQUENCES.values():
            assert set(names) <= registered

    def test_old_formats_share_sequence(self):
        old = [s.name for s in steps.step_sequence(FormatVersion.V_OLD)]
        mid = [s.name for s in steps.step_sequence(FormatVersion.V_MID)]
        assert old == mid
        assert mid.index("compute_left_right_token") < mid.index("add_unique_node_name_appendix")
        assert mid.index("compute_real_root") < mid.index("compute_level") < mid.index("apply_constraints")
        assert mid.index("compute_left_right_token") < mid.index("compute_continuity")
        assert mid.index("compute_level") < mid.index("compute_span_from_segmentation") < mid.index("apply_constraints")

    def test_current_format_checks_constraints_first(self):
        names = [s.name for s in steps.step_sequence(FormatVersion.V_NEW)]
        assert names[0] == "apply_constraints"
        assert "compute_left_right_token" not in names

    def test_unknown_version_has_no_sequence(self):
        with pytest.raises(FormatError):
            steps.step_sequence(FormatVersion.UNKNOWN)


# ---------------------------------------------------------------------------
# Corpus hierarchy
# ---------------------------------------------------------------------------


class TestCorpusSteps:
    def test_top_level_is_outermost_interval(self, staged):
        _insert(staged, "corpus", [
            {"id": 0, "name": "pcc", "type": "CORPUS", "pre": 0, "post": 5},
            {"id": 1, "name": "doc1", "type": "DOCUMENT", "pre": 1, "post": 2},
            {"id": 2, "name": "doc2", "type": "DOCUMENT", "pre": 3, "post": 4},
        ])
        steps.compute_top_level_corpus(staged)
        assert _rows(staged, "corpus", "id", "top_level") == [(0, True), (1, False), (2, False)]

    def test_text_follows_its_nodes(self, staged):
        _graph(staged)
        _insert(staged, "text", [{"id": 0, "name": "t0", "text": "a b c"}, {"id": 7, "name": "orphan", "text": ""}])
        steps.adjust_text_id(staged)
        assert _rows(staged, "text", "id", "corpus_ref") == [(0, 1), (7, 0)]

    def test_document_metadata_added_once(self, staged):
        _graph(staged)
        steps.add_document_name_metadata(staged)
        steps.add_document_name_metadata(staged)
        rows = _rows(staged, "corpus_annotation", "corpus_ref", "namespace", "name", "value", order_by="corpus_ref")
        assert rows == [(1, "annis", "doc", "doc1")]


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class TestNodeSteps:
    def test_left_right_token(self, staged):
        _graph(staged)
        steps.compute_left_right_token(staged)
        assert _rows(staged, "node", "id", "left_token", "right_token") == [
            (0, 0, 0), (1, 1, 1), (2, 2, 2), (3, 0, 2),
        ]

    def test_left_right_token_is_idempotent(self, staged):
        _graph(staged)
        steps.compute_left_right_token(staged)
        first = _rows(staged, "node", "id", "left_token", "right_token")
        steps.compute_left_right_token(staged)
        assert _rows(staged, "node", "id", "left_token", "right_token") == first

    def test_ordering_components_do_not_cover(self, staged):
        _graph(staged)
        staged.connection.execute(sa.update(staged.staging.table("component")).values(type="o"))
        with pytest.raises(FormatError, match="covers no token"):
            steps.compute_left_right_token(staged)

    def test_continuity(self, staged):
        _graph(staged, span_children=(0, 2))
        _insert(staged, "node", [_node(4, "full")])
        _insert(staged, "rank", [_rank(10, 17, 4), _rank(11, 12, 0, parent=10), _rank(13, 14, 1, parent=10), _rank(15, 16, 2, parent=10)])
        steps.compute_left_right_token(staged)
        steps.compute_continuity(staged)
        assert _rows(staged, "node", "id", "continuous") == [
            (0, True), (1, True), (2, True), (3, False), (4, True),
        ]

    def test_span_from_segmentation(self, staged):
        segment = {**_node(5, "seg_1"), "seg_index": 0, "seg_name": "dipl"}
        unannotated = {**_node(6, "seg_2"), "seg_index": 1, "seg_name": "dipl"}
        spanned = {**_node(7, "seg_3"), "seg_index": 2, "seg_name": "dipl", "span": "kept"}
        _insert(staged, "node", [_node(0, "tok_0", token_index=0), segment, unannotated, spanned])
        _insert(staged, "node_annotation", [
            {"node_ref": 5, "namespace": "dipl", "name": "dipl", "value": "Daz"},
            {"node_ref": 5, "namespace": "dipl", "name": "lemma", "value": "der"},
            {"node_ref": 6, "namespace": "dipl", "name": "norm", "value": "ist"},
            {"node_ref": 7, "namespace": "dipl", "name": "dipl", "value": "guot"},
        ])
        steps.compute_span_from_segmentation(staged)
        assert _rows(staged, "node", "id", "span") == [(0, None), (5, "Daz"), (6, None), (7, "kept")]

    def test_unique_names_untouched(self, staged, caplog):
        _graph(staged)
        with caplog.at_level("INFO", logger="corpus_import.tasks.steps"):
            steps.add_unique_node_name_appendix(staged)
        assert "already unique" in caplog.text
        assert [row.name for row in _rows(staged, "node", "name")] == ["tok_0", "tok_1", "tok_2", "span"]

    def test_duplicate_names_get_id_appendix(self, staged):
        _insert(staged, "node", [
            _node(0, "tok"),
            _node(1, "tok"),
            _node(2, "tok", corpus_ref=2),
            _node(3, "other"),
        ])
        steps.add_unique_node_name_appendix(staged)
        assert [row.name for row in _rows(staged, "node", "name")] == ["tok", "tok_1", "tok", "other"]

    def test_name_already_carrying_a_suffix_is_kept(self, staged):
        _insert(staged, "node", [_node(0, "a"), _node(1, "a"), _node(2, "a_1")])
        steps.add_unique_node_name_appendix(staged)
        assert [row.name for row in _rows(staged, "node", "name")] == ["a", "a_1_1", "a_1"]

    def test_suffix_collisions_are_extended_until_free(self, staged):
        _insert(staged, "node", [_node(0, "a"), _node(1, "a"), _node(2, "a"), _node(3, "a_2"), _node(4, "a_2_2")])
        steps.add_unique_node_name_appendix(staged)
        names = [row.name for row in _rows(staged, "node", "name")]
        assert names == ["a", "a_1", "a_2_2_2", "a_2", "a_2_2"]
        assert len(set(names)) == len(names)


# ---------------------------------------------------------------------------
# Ranks
# ---------------------------------------------------------------------------


class TestRankSteps:
    def test_rank_ids_from_pre(self, staged):
        _insert(staged, "rank", [{"pre": 4, "post": 5, "node_ref": 0, "component_ref": 0}])
        steps.compute_rank_ids(staged)
        assert _rows(staged, "rank", "id", "pre") == [(4, 4)]

    def test_real_root_and_level(self, staged):
        _insert(staged, "rank", [
            _rank(0, 7, 3),
            _rank(1, 6, 2, parent=0),
            _rank(2, 3, 0, parent=1),
            _rank(4, 5, 1, parent=1),
        ])
        steps.compute_real_root(staged)
        steps.compute_level(staged)
        assert _rows(staged, "rank", "id", "root", "level") == [
            (0, True, 0), (1, False, 1), (2, False, 2), (4, False, 2),
        ]

    def test_level_per_component_tree(self, staged):
        _insert(staged, "rank", [
            _rank(0, 3, 3),
            _rank(1, 2, 0, parent=0),
            _rank(4, 11, 3, component_ref=1),
            _rank(5, 10, 2, component_ref=1, parent=4),
            _rank(6, 9, 1, component_ref=1, parent=5),
            _rank(7, 8, 0, component_ref=1, parent=6),
        ])
        steps.compute_level(staged)
        assert _rows(staged, "rank", "id", "level") == [(0, 0), (1, 1), (4, 0), (5, 1), (6, 2), (7, 3)]

    def test_cycle_is_rejected(self, staged):
        _insert(staged, "rank", [
            _rank(0, 1, 0),
            _rank(2, 5, 1, parent=3),
            _rank(3, 4, 2, parent=2),
        ])
        with pytest.raises(FormatError, match="not reachable from a root"):
            steps.compute_level(staged)


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class TestApplyConstraints:
    def test_valid_graph_passes(self, staged):
        _graph(staged)
        steps.apply_constraints(staged)

    def test_orphan_annotation_rejected(self, staged):
        _graph(staged)
        _insert(staged, "node_annotation", [{"node_ref": 99, "namespace": "tiger", "name": "pos", "value": "NN"}])
        with pytest.raises(FormatError, match="node annotation without node"):
            steps.apply_constraints(staged)

    def test_duplicate_node_rejected(self, staged):
        _graph(staged)
        _insert(staged, "node", [_node(0, "again", token_index=0)])
        with pytest.raises(FormatError, match="duplicate node id"):
            steps.apply_constraints(staged)

    def test_inverted_interval_rejected(self, staged):
        _graph(staged)
        staged.connection.execute(
            sa.update(staged.staging.table("corpus")).where(staged.staging.table("corpus").c.id == 1).values(pre=5)
        )
        with pytest.raises(FormatError, match="pre >= post"):
            steps.apply_constraints(staged)

    def test_two_top_level_corpora_rejected(self, staged):
        _graph(staged)
        staged.connection.execute(sa.update(staged.staging.table("corpus")).values(top_level=True))
        with pytest.raises(FormatError, match="exactly one top-level corpus, found 2"):
            steps.apply_constraints(staged)
