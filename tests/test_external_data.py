"""Tests for corpus_import/tasks/external_data.py.

Covers:
- a marked annotation becomes the numeric id of its media row
- the media row carries the mime type, title and corpus path
- payloads land in data_dir only after commit; the incoming directory is removed
- files with an unknown extension are skipped with a warning
- unreferenced files in ExtData and ExtData/<document> are registered
- a failing import leaves no media rows and no files
- publish reports late cancellation and failed placement as CancellationRaceWarning
"""
from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa

from corpus_import.core.errors import CancellationRaceWarning, FileAccessError
from corpus_import.db import models
from corpus_import.tasks.external_data import INCOMING_DIR, MediaStager


def _media(session_factory) -> list[models.MediaFile]:
    with session_factory() as session:
        return session.execute(sa.select(models.MediaFile).order_by(models.MediaFile.id)).scalars().all()


def _annotation(session_factory, name: str) -> str:
    with session_factory() as session:
        return session.execute(
            sa.select(models.NodeAnnotation.value).where(models.NodeAnnotation.name == name)
        ).scalar_one()


def _stored_files(data_dir: Path) -> list[str]:
    if not data_dir.is_dir():
        return []
    return sorted(entry.name for entry in data_dir.iterdir() if entry.is_file())


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class TestExternalDataImport:
    def test_marker_replaced_by_media_id(self, importer, make_corpus, session_factory, settings):
        directory = make_corpus(
            "3.3",
            extra_node_annotations=[(3, "tiger", "audio", "[ExtFile]clip1.mp3")],
            ext_files={"clip1.mp3": b"ID3-payload"},
        )
        result = importer.import_corpus(directory)

        media = _media(session_factory)
        assert len(media) == 1
        row = media[0]
        assert result.media_ids == [row.id]
        assert _annotation(session_factory, "audio") == str(row.id)
        assert row.mime_type == "audio/mpeg"
        assert row.title == "clip1.mp3"
        assert row.corpus_path == "pcc/doc1"
        assert row.toplevel_corpus == result.corpus_id

        data_dir = Path(settings.data_dir)
        assert _stored_files(data_dir) == [row.filename]
        assert (data_dir / row.filename).read_bytes() == b"ID3-payload"
        assert list((data_dir / INCOMING_DIR).iterdir()) == []

    def test_unknown_extension_skipped(self, importer, make_corpus, session_factory, caplog):
        directory = make_corpus(
            "3.3",
            extra_node_annotations=[(3, "tiger", "notes", "[ExtFile]notes.xyz")],
            ext_files={"notes.xyz": b"?"},
        )
        with caplog.at_level("WARNING", logger="corpus_import.tasks.external_data"):
            result = importer.import_corpus(directory)

        assert result.media_ids == []
        assert _media(session_factory) == []
        assert _annotation(session_factory, "notes") == "[ExtFile]notes.xyz"
        assert "no mime type" in caplog.text

    def test_directory_files_registered(self, importer, make_corpus, session_factory):
        directory = make_corpus(
            "3.3",
            ext_files={"overview.pdf": b"%PDF", "doc1/interview.webm": b"webm", "doc1/readme.xyz": b"?"},
        )
        importer.import_corpus(directory)

        media = {row.title: row for row in _media(session_factory)}
        assert set(media) == {"overview.pdf", "interview.webm"}
        assert media["overview.pdf"].corpus_path == "pcc"
        assert media["interview.webm"].corpus_path == "pcc/doc1"
        assert media["interview.webm"].mime_type == "video/webm"

    def test_failed_import_discards_files(self, importer, make_corpus, session_factory, settings):
        directory = make_corpus(
            "3.3",
            extra_node_annotations=[
                (3, "tiger", "audio", "[ExtFile]clip1.mp3"),
                (2, "tiger", "audio", "[ExtFile]missing.mp3"),
            ],
            ext_files={"clip1.mp3": b"ID3"},
        )
        with pytest.raises(FileAccessError, match="missing.mp3"):
            importer.import_corpus(directory)

        assert _media(session_factory) == []
        data_dir = Path(settings.data_dir)
        assert _stored_files(data_dir) == []
        assert list((data_dir / INCOMING_DIR).iterdir()) == []

    def test_reference_outside_ext_data_rejected(self, importer, make_corpus):
        directory = make_corpus(
            "3.3",
            extra_node_annotations=[(3, "tiger", "audio", "[ExtFile]../corpus.annis")],
        )
        with pytest.raises(FileAccessError, match="outside ExtData"):
            importer.import_corpus(directory)


# ---------------------------------------------------------------------------
# MediaStager
# ---------------------------------------------------------------------------


class TestMediaStager:
    def _staged(self, tmp_path: Path) -> MediaStager:
        source = tmp_path / "clip.mp3"
        source.write_bytes(b"ID3")
        stager = MediaStager(tmp_path / "media", "import-1")
        stager.stage(source, "abc.mp3")
        return stager

    def test_publish_moves_files(self, tmp_path):
        stager = self._staged(tmp_path)
        assert (stager.incoming / "abc.mp3").is_file()
        assert stager.publish() == ["abc.mp3"]
        assert (tmp_path / "media" / "abc.mp3").read_bytes() == b"ID3"
        assert not stager.incoming.exists()

    def test_discard_removes_incoming(self, tmp_path):
        stager = self._staged(tmp_path)
        stager.discard()
        assert not stager.incoming.exists()
        assert not (tmp_path / "media" / "abc.mp3").exists()

    def test_late_cancellation_warns_but_places(self, tmp_path):
        stager = self._staged(tmp_path)
        with pytest.warns(CancellationRaceWarning, match="after commit"):
            placed = stager.publish(cancel_requested=True)
        assert placed == ["abc.mp3"]

    def test_failed_placement_warns(self, tmp_path):
        stager = self._staged(tmp_path)
        (stager.incoming / "abc.mp3").unlink()
        with pytest.warns(CancellationRaceWarning, match="could not be placed"):
            assert stager.publish() == []

    def test_stage_missing_source_raises(self, tmp_path):
        stager = MediaStager(tmp_path / "media", "import-2")
        with pytest.raises(FileAccessError):
            stager.stage(tmp_path / "absent.mp3", "x.mp3")
