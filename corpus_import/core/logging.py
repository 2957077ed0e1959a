import contextvars
import logging
import logging.config
from contextlib import contextmanager

_current_corpus: contextvars.ContextVar[str] = contextvars.ContextVar("current_corpus", default="-")


@contextmanager
def import_log_context(corpus: str):
    """Stamp every log record emitted inside the block with ``corpus``."""
    token = _current_corpus.set(corpus)
    try:
        yield
    finally:
        _current_corpus.reset(token)


class ImportContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "corpus"):
            record.corpus = _current_corpus.get()
        return True


def setup_logging() -> None:
    from corpus_import.core.settings import get_settings

    settings = get_settings()
    logging.captureWarnings(True)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "import_context": {
                    "()": "corpus_import.core.logging.ImportContextFilter",
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s %(name)s [%(corpus)s] %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["import_context"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["console"],
                    "level": settings.log_level.upper(),
                },
                "py.warnings": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
                "sqlalchemy.engine": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }
    )
