"""Administration of imported corpora: listing, deletion, aliases, media cleanup."""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.orm import Session

from corpus_import.db.models import CorpusStats
from corpus_import.db.repositories import CorpusAliasRepository, CorpusRepository, CorpusStatsRepository, MediaFileRepository
from corpus_import.tasks.conflicts import delete_corpora
from corpus_import.tasks.external_data import INCOMING_DIR

logger = logging.getLogger(__name__)


def list_corpora(session: Session, limit: int = 1000) -> list[CorpusStats]:
    return CorpusStatsRepository(session).list(limit=limit)


def delete_corpora_by_id(session: Session, corpus_ids: list[int]) -> list[str]:
    """Delete top-level corpora in the session's transaction; the caller commits.

    Returns the names of the deleted corpora.
    """
    repo = CorpusRepository(session)
    names = [corpus.name for corpus in (repo.get(corpus_id) for corpus_id in corpus_ids) if corpus is not None]
    delete_corpora(session.connection(), corpus_ids)
    session.expire_all()
    return names


def add_corpus_alias(session: Session, corpus_id: int, alias: str) -> None:
    corpus = CorpusRepository(session).get(corpus_id)
    if corpus is None or not corpus.top_level:
        raise ValueError(f"{corpus_id} is not the id of a top-level corpus")
    repo = CorpusAliasRepository(session)
    if alias in repo.aliases_for(corpus_id):
        return
    repo.create(alias=alias, corpus_ref=corpus_id)
    logger.info("Added alias %r for corpus %s", alias, corpus.name)


def cleanup_data(session: Session, data_dir: str | Path) -> list[str]:
    """Delete files in managed storage no media row references; return their names."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    referenced = MediaFileRepository(session).filenames()
    removed = []
    for entry in sorted(data_dir.iterdir()):
        if entry.name == INCOMING_DIR or not entry.is_file():
            continue
        if entry.name not in referenced:
            entry.unlink()
            removed.append(entry.name)
    logger.info("Removed %d unreferenced files from %s", len(removed), data_dir)
    return removed
