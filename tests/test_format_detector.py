"""Tests for corpus_import/tasks/format_detector.py.

Covers:
- annis.version with 3.3 -> V_NEW, .annis suffix
- annis.version with other content -> UNKNOWN, node.tab not consulted
- 13-column node.tab -> V_MID, 10 columns -> V_OLD, .tab suffix
- any other column count, missing files, missing directory -> UNKNOWN
- require_format raises FormatError for UNKNOWN
"""
from __future__ import annotations

import pytest

from corpus_import.core.errors import FormatError
from corpus_import.tasks.format_detector import FormatVersion, detect_format, require_format


def _node_tab(directory, columns: int) -> None:
    (directory / "node.tab").write_text("\t".join(["x"] * columns) + "\n", encoding="utf-8")


class TestDetectFormat:
    def test_version_marker_selects_current_format(self, make_corpus):
        directory = make_corpus("3.3")
        assert detect_format(directory) is FormatVersion.V_NEW
        assert detect_format(directory).file_suffix == ".annis"

    def test_marker_with_whitespace_is_accepted(self, tmp_path):
        (tmp_path / "annis.version").write_text("3.3  \r\n", encoding="utf-8")
        assert detect_format(tmp_path) is FormatVersion.V_NEW

    def test_unrecognized_marker_wins_over_node_table(self, tmp_path):
        (tmp_path / "annis.version").write_text("3.4\n", encoding="utf-8")
        _node_tab(tmp_path, 13)
        assert detect_format(tmp_path) is FormatVersion.UNKNOWN

    def test_thirteen_columns_is_mid_format(self, make_corpus):
        directory = make_corpus("3.2")
        assert detect_format(directory) is FormatVersion.V_MID
        assert detect_format(directory).file_suffix == ".tab"

    def test_ten_columns_is_old_format(self, make_corpus):
        assert detect_format(make_corpus("3.1")) is FormatVersion.V_OLD

    @pytest.mark.parametrize("columns", [1, 9, 11, 14])
    def test_other_column_counts_are_unknown(self, tmp_path, columns):
        _node_tab(tmp_path, columns)
        assert detect_format(tmp_path) is FormatVersion.UNKNOWN

    def test_empty_directory_is_unknown(self, tmp_path):
        assert detect_format(tmp_path) is FormatVersion.UNKNOWN

    def test_missing_directory_is_unknown(self, tmp_path):
        assert detect_format(tmp_path / "absent") is FormatVersion.UNKNOWN

    def test_unknown_has_no_suffix(self):
        with pytest.raises(FormatError):
            FormatVersion.UNKNOWN.file_suffix


class TestRequireFormat:
    def test_returns_detected_version(self, make_corpus):
        assert require_format(make_corpus("3.2")) is FormatVersion.V_MID

    def test_raises_for_unknown(self, tmp_path):
        with pytest.raises(FormatError, match="not a recognized relANNIS"):
            require_format(tmp_path)
