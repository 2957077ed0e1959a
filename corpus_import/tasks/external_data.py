"""External data: media payloads referenced from the annotation graph.

Annotation values of the form ``[ExtFile]<file>`` name a file under the import
directory's ``ExtData`` folder.  Each referenced file is registered in
``media_files`` and the annotation value is replaced by the numeric id of that
row.  Files with an extension missing from the mime-type map are skipped with
a warning.  Files lying directly in ``ExtData`` or in ``ExtData/<document>``
are registered too, for the top-level corpus or that document.

File placement is two-phase: during the import transaction files are copied
into ``<data_dir>/.incoming/<import id>/``; ``MediaStager.publish`` renames
them into ``data_dir`` after commit, ``MediaStager.discard`` removes them after
a rollback.
"""
from __future__ import annotations

import logging
import os
import shutil
import uuid
import warnings
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.orm import Session

from corpus_import.core.constants import EXT_DATA_DIR, EXT_FILE_MARKER
from corpus_import.core.errors import CancellationRaceWarning, FileAccessError
from corpus_import.db.repositories import MediaFileRepository
from corpus_import.tasks.staging import StagingArea

logger = logging.getLogger(__name__)

INCOMING_DIR = ".incoming"


class MediaStager:
    """Copies media into a per-import incoming directory until commit."""

    def __init__(self, data_dir: str | Path, import_id: str):
        self.data_dir = Path(data_dir)
        self.incoming = self.data_dir / INCOMING_DIR / import_id
        self.staged: list[str] = []

    def stage(self, source: Path, filename: str) -> None:
        try:
            self.incoming.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, self.incoming / filename)
        except OSError as exc:
            raise FileAccessError(source, exc.strerror) from exc
        self.staged.append(filename)

    def publish(self, *, cancel_requested: bool = False) -> list[str]:
        """Move staged files into managed storage; return the names placed.

        Runs after the database commit, so failures can no longer be rolled
        back.  They are reported as CancellationRaceWarning instead.
        """
        if cancel_requested and self.staged:
            message = (
                f"cancellation requested after commit; placing {len(self.staged)} "
                "media files of the committed import anyway"
            )
            logger.warning(message)
            warnings.warn(message, CancellationRaceWarning, stacklevel=2)

        placed = []
        for filename in self.staged:
            try:
                os.replace(self.incoming / filename, self.data_dir / filename)
            except OSError as exc:
                message = f"committed media file {filename} could not be placed: {exc.strerror}"
                logger.error(message)
                warnings.warn(message, CancellationRaceWarning, stacklevel=2)
                continue
            placed.append(filename)
        self.staged = []
        self._remove_incoming()
        return placed

    def discard(self) -> None:
        if self.staged:
            logger.info("Discarding %d staged media files", len(self.staged))
        self.staged = []
        self._remove_incoming()

    def _remove_incoming(self) -> None:
        if self.incoming.exists():
            shutil.rmtree(self.incoming)


class ExternalDataImporter:
    """Registers the media of one import and rewrites marker annotations.

    Parameters
    ----------
    session:
        Session of the import transaction.
    staging:
        Staging area holding the import's node annotations.
    stager:
        Two-phase file placement for the copied payloads.
    mime_types:
        Extension (lowercase, without dot) to mime type.
    """

    def __init__(
        self,
        session: Session,
        staging: StagingArea,
        stager: MediaStager,
        mime_types: dict[str, str],
    ):
        self.session = session
        self.staging = staging
        self.stager = stager
        self.mime_types = {key.lower().lstrip("."): value for key, value in mime_types.items()}
        self.media = MediaFileRepository(session)

    def run(
        self,
        import_dir: str | Path,
        toplevel_id: int,
        toplevel_name: str,
        corpus_paths: dict[int, str],
    ) -> list[int]:
        """Import referenced and directory media; return the new media ids."""
        ext_dir = Path(import_dir) / EXT_DATA_DIR
        registered: set[Path] = set()
        media_ids = self._import_marked_files(ext_dir, toplevel_id, toplevel_name, corpus_paths, registered)
        if ext_dir.is_dir():
            media_ids.extend(
                self._import_directory_files(ext_dir, toplevel_id, toplevel_name, corpus_paths, registered)
            )
        logger.info("Registered %d media files", len(media_ids))
        return media_ids

    def _mime_type(self, path: Path) -> str | None:
        mime_type = self.mime_types.get(path.suffix.lstrip(".").lower())
        if mime_type is None:
            logger.warning("Skipping external file %s: no mime type for extension %r", path.name, path.suffix)
        return mime_type

    def _register(self, source: Path, toplevel_id: int, corpus_path: str, mime_type: str) -> int:
        filename = f"{uuid.uuid4().hex}{source.suffix.lower()}"
        self.stager.stage(source, filename)
        media = self.media.create(
            filename=filename,
            toplevel_corpus=toplevel_id,
            corpus_path=corpus_path,
            mime_type=mime_type,
            title=source.name,
        )
        return media.id

    def _import_marked_files(self, ext_dir, toplevel_id, toplevel_name, corpus_paths, registered) -> list[int]:
        annotation = self.staging.table("node_annotation")
        node = self.staging.table("node")
        connection = self.staging.connection
        references = connection.execute(
            sa.select(annotation.c.value, sa.func.min(node.c.corpus_ref).label("corpus_ref"))
            .select_from(annotation.join(node, node.c.id == annotation.c.node_ref))
            .where(annotation.c.value.like(f"{EXT_FILE_MARKER}%"))
            .group_by(annotation.c.value)
            .order_by(annotation.c.value)
        ).all()

        media_ids = []
        root = ext_dir.resolve()
        for value, corpus_ref in references:
            source = (ext_dir / value[len(EXT_FILE_MARKER):].strip()).resolve()
            if not source.is_relative_to(root):
                raise FileAccessError(source, f"referenced file lies outside {EXT_DATA_DIR}")
            mime_type = self._mime_type(source)
            if mime_type is None:
                continue
            if not source.is_file():
                raise FileAccessError(source, "referenced external file does not exist")

            media_id = self._register(
                source, toplevel_id, corpus_paths.get(corpus_ref, toplevel_name), mime_type
            )
            connection.execute(
                sa.update(annotation).where(annotation.c.value == value).values(value=str(media_id))
            )
            registered.add(source)
            media_ids.append(media_id)
        return media_ids

    def _import_directory_files(self, ext_dir, toplevel_id, toplevel_name, corpus_paths, registered) -> list[int]:
        paths_by_name = {path.rsplit("/", 1)[-1]: path for path in corpus_paths.values()}
        media_ids = []
        for entry in sorted(ext_dir.iterdir()):
            if entry.is_file():
                candidates = [(entry, toplevel_name)]
            elif entry.is_dir():
                corpus_path = paths_by_name.get(entry.name, f"{toplevel_name}/{entry.name}")
                candidates = [(child, corpus_path) for child in sorted(entry.iterdir()) if child.is_file()]
            else:
                continue
            for source, corpus_path in candidates:
                if source.resolve() in registered:
                    continue
                mime_type = self._mime_type(source)
                if mime_type is None:
                    continue
                media_ids.append(self._register(source, toplevel_id, corpus_path, mime_type))
                registered.add(source.resolve())
        return media_ids
