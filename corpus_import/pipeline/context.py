from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from corpus_import.core.settings import Settings
from corpus_import.pipeline.statement_controller import StatementController
from corpus_import.tasks.format_detector import FormatVersion
from corpus_import.tasks.offsets import Offsets
from corpus_import.tasks.staging import StagingArea


@dataclass
class ImportContext:
    """State of one corpus import, threaded through every step.

    Created by the importer for a single import and discarded afterwards;
    steps never keep state of their own between imports.
    """

    session: Session
    settings: Settings
    controller: StatementController
    import_dir: Path
    version: FormatVersion
    staging: StagingArea
    overwrite: bool = False
    alias: str | None = None
    import_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    toplevel_name: str | None = None
    toplevel_id: int | None = None
    offsets: Offsets | None = None
    replaced_corpus_id: int | None = None
    corpus_paths: dict[int, str] = field(default_factory=dict)
    media_ids: list[int] = field(default_factory=list)
    executed_steps: list[str] = field(default_factory=list)
    current_step: str | None = None

    @property
    def connection(self) -> Connection:
        return self.staging.connection

    def checkpoint(self, name: str) -> None:
        self.controller.check(name)
