from __future__ import annotations

from pathlib import Path

import typer

from corpus_import.core.errors import CorpusImportError
from corpus_import.core.logging import setup_logging
from corpus_import.core.settings import get_settings
from corpus_import.db.base import Base
from corpus_import.db import models  # noqa: F401
from corpus_import.db.session import get_engine, get_session_factory
from corpus_import.pipeline.importer import CorpusImporter
from corpus_import.tasks.administration import add_corpus_alias, cleanup_data, delete_corpora_by_id, list_corpora
from corpus_import.tasks.corpus_config import YamlCorpusConfigStore

app = typer.Typer(help="Import relANNIS corpora into the search schema.")


@app.callback()
def main() -> None:
    setup_logging()


@app.command("init-schema")
def init_schema() -> None:
    """Create the target tables (development databases; use alembic elsewhere)."""
    Base.metadata.create_all(get_engine())
    typer.echo("schema created")


@app.command("import")
def import_corpora(
    paths: list[Path] = typer.Argument(..., exists=True, file_okay=False, help="relANNIS directories."),
    alias: str | None = typer.Option(None, help="Alias to register for every imported corpus."),
    overwrite: bool = typer.Option(False, help="Replace existing corpora with the same name."),
) -> None:
    """Import one or more relANNIS directories, each in its own transaction."""
    importer = CorpusImporter()
    failed = 0
    for path in paths:
        try:
            result = importer.import_corpus(path, alias=alias, overwrite=overwrite)
        except CorpusImportError as exc:
            failed += 1
            typer.echo(f"failed: {path}: {exc}", err=True)
            continue
        typer.echo(f"imported: {result.name} (id {result.corpus_id}, format {result.version.value})")
    if failed:
        raise typer.Exit(code=1)


@app.command("list")
def list_command() -> None:
    """List imported corpora with their statistics."""
    with get_session_factory()() as session:
        for stats in list_corpora(session):
            typer.echo(f"{stats.id}\t{stats.name}\ttexts={stats.text}\ttokens={stats.tokens}\t{stats.source_path}")


@app.command("delete")
def delete(corpus_ids: list[int] = typer.Argument(..., help="Top-level corpus ids.")) -> None:
    """Delete corpora and everything below them."""
    with get_session_factory()() as session:
        names = delete_corpora_by_id(session, corpus_ids)
        session.commit()
    store = YamlCorpusConfigStore(get_settings().corpus_config_dir)
    for name in names:
        store.delete(name)
    typer.echo(f"deleted: {', '.join(str(corpus_id) for corpus_id in corpus_ids)}")


@app.command("alias")
def alias_command(corpus_id: int, alias: str) -> None:
    """Register an alias for a top-level corpus."""
    with get_session_factory()() as session:
        add_corpus_alias(session, corpus_id, alias)
        session.commit()
    typer.echo(f"alias {alias} -> {corpus_id}")


@app.command("cleanup-data")
def cleanup_data_command() -> None:
    """Delete media files no imported corpus references."""
    with get_session_factory()() as session:
        removed = cleanup_data(session, get_settings().data_dir)
    for name in removed:
        typer.echo(f"removed: {name}")


if __name__ == "__main__":
    app()
