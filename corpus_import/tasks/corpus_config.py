"""Corpus configuration store and the post-import configuration tasks.

The store keeps one YAML mapping per top-level corpus in
``<corpus_config_dir>/<corpus name>.yaml``.  After an import commits, the
importer makes sure a configuration exists and disables document browsing
for corpora with an empty or whitespace-only primary text, unless the
configuration switches it on explicitly.

Example-query generation is delegated to an ``ExampleQueryGenerator``.  Whether
it runs is decided once, before the import starts, from the tri-state
``generate_example_queries`` setting.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

import yaml
from sqlalchemy import select
from sqlalchemy.orm import Session

from corpus_import.db.models import Corpus, PrimaryText

logger = logging.getLogger(__name__)

BROWSE_DOCUMENTS = "browse-documents"

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


class YamlCorpusConfigStore:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, corpus_name: str) -> Path:
        return self.directory / f"{_SAFE_NAME.sub('_', corpus_name)}.yaml"

    def load(self, corpus_name: str) -> dict | None:
        """Return the configuration of ``corpus_name``, or None if there is none.

        Raises
        ------
        ValueError
            If the file does not hold a YAML mapping.
        """
        path = self.path_for(corpus_name)
        if not path.is_file():
            return None
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a YAML mapping, got {type(data).__name__}")
        return data

    def save(self, corpus_name: str, config: dict) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.path_for(corpus_name), "w", encoding="utf-8") as fh:
            yaml.safe_dump(config, fh, default_flow_style=False, sort_keys=True)

    def delete(self, corpus_name: str) -> None:
        self.path_for(corpus_name).unlink(missing_ok=True)


def ensure_default_config(store: YamlCorpusConfigStore, corpus_name: str) -> dict:
    config = store.load(corpus_name)
    if config is None:
        logger.info("Creating empty configuration for %s", corpus_name)
        config = {}
        store.save(corpus_name, config)
    return config


def _explicitly_enabled(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


def analyze_text_table(session: Session, store: YamlCorpusConfigStore, corpus_id: int, corpus_name: str) -> bool:
    """Disable document browsing when a primary text is blank; return True if disabled."""
    top = session.get(Corpus, corpus_id)
    subtree = select(Corpus.id).where(Corpus.pre >= top.pre, Corpus.post <= top.post)
    texts = session.execute(select(PrimaryText.text).where(PrimaryText.corpus_ref.in_(subtree))).scalars()
    if not any(text is not None and not text.strip() for text in texts):
        return False

    config = store.load(corpus_name) or {}
    if _explicitly_enabled(config.get(BROWSE_DOCUMENTS)):
        return False
    logger.info("Disabling document browser for %s: it has a blank primary text", corpus_name)
    config[BROWSE_DOCUMENTS] = False
    store.save(corpus_name, config)
    return True


class ExampleQueryGenerator(Protocol):
    def generate(self, session: Session, corpus_id: int) -> int:
        """Create example queries for ``corpus_id``; return how many were added."""
        ...


class NoopExampleQueryGenerator:
    def generate(self, session: Session, corpus_id: int) -> int:
        logger.info("No example query generator configured for corpus %d", corpus_id)
        return 0


def resolve_example_query_generation(setting: str, example_file_exists: bool) -> bool:
    """Turn the IF_MISSING/TRUE/FALSE setting into a plain decision."""
    mode = setting.upper()
    if mode == "TRUE":
        return True
    if mode == "FALSE":
        return False
    if mode == "IF_MISSING":
        return not example_file_exists
    raise ValueError(f"invalid example query generation setting {setting!r}")
