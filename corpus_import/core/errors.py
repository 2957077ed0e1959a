"""Error taxonomy for corpus imports.

Every fatal condition raised by the import pipeline is a subclass of
``CorpusImportError``.  None of them is retried automatically: re-running an
import is an operator decision.

Categories
----------
FormatError            : unrecognized or structurally invalid import directory
ConflictingCorpusError : a top-level corpus of the same name already exists
DatabaseAccessError    : bulk copy or a transform step failed in the engine
FileAccessError        : a table file or media file cannot be read or copied
CancelledError         : cancellation was requested while the import ran

``CancellationRaceWarning`` is not an exception the pipeline raises; it is a
``warnings`` category used to report media files whose placement could not be
completed in step with the database commit.
"""
from __future__ import annotations


class CorpusImportError(Exception):
    retryable = False


class FormatError(CorpusImportError):
    pass


class ConflictingCorpusError(CorpusImportError):
    def __init__(self, corpus_name: str):
        super().__init__(
            f"top-level corpus {corpus_name!r} already exists; "
            "delete it first or import with overwrite"
        )
        self.corpus_name = corpus_name


class DatabaseAccessError(CorpusImportError):
    def __init__(self, message: str, diagnostic: str | None = None):
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(message)
        self.diagnostic = diagnostic


class FileAccessError(CorpusImportError):
    def __init__(self, path: object, reason: str | None = None):
        message = f"cannot access {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.path = str(path)


class CancelledError(CorpusImportError):
    def __init__(self, step: str | None = None):
        super().__init__(f"import cancelled at step {step!r}" if step else "import cancelled")
        self.step = step


class CancellationRaceWarning(UserWarning):
    pass
