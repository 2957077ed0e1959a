from __future__ import annotations

from typing import Iterable, NamedTuple


class CorpusInterval(NamedTuple):
    id: int
    name: str
    pre: int
    post: int


def nested_set_paths(corpora: Iterable[CorpusInterval]) -> dict[int, str]:
    """Map each corpus id to the slash-joined names from its top-level corpus down.

    Parents are found by nested-set containment: walking the corpora in
    pre-order, a corpus's parent is the nearest open interval that still
    contains it.
    """
    paths: dict[int, str] = {}
    open_intervals: list[tuple[CorpusInterval, str]] = []
    for corpus in sorted(corpora, key=lambda c: c.pre):
        while open_intervals and open_intervals[-1][0].post < corpus.post:
            open_intervals.pop()
        if open_intervals:
            path = f"{open_intervals[-1][1]}/{corpus.name}"
        else:
            path = corpus.name
        paths[corpus.id] = path
        open_intervals.append((corpus, path))
    return paths
