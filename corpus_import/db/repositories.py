from __future__ import annotations

from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from corpus_import.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: int) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()


class CorpusRepository(BaseRepository[models.Corpus]):
    model = models.Corpus


class CorpusStatsRepository(BaseRepository[models.CorpusStats]):
    model = models.CorpusStats

    def list(self, limit: int = 100, offset: int = 0) -> list[models.CorpusStats]:
        stmt = select(models.CorpusStats).order_by(models.CorpusStats.id).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()


class MediaFileRepository(BaseRepository[models.MediaFile]):
    model = models.MediaFile

    def filenames(self) -> set[str]:
        return set(self.db.execute(select(models.MediaFile.filename)).scalars().all())


class ExampleQueryRepository(BaseRepository[models.ExampleQuery]):
    model = models.ExampleQuery


class ResolverEntryRepository(BaseRepository[models.ResolverEntry]):
    model = models.ResolverEntry


class CorpusAliasRepository(BaseRepository[models.CorpusAlias]):
    model = models.CorpusAlias

    def aliases_for(self, corpus_ref: int) -> list[str]:
        stmt = select(models.CorpusAlias.alias).where(models.CorpusAlias.corpus_ref == corpus_ref)
        return self.db.execute(stmt).scalars().all()
