"""Fixed names shared by the staging area, the transform steps and the loaders."""
from __future__ import annotations

STAGING_PREFIX = "_"

# Bulk-loaded tables, in load order.  Teardown runs in reverse.
IMPORTED_TABLES: tuple[str, ...] = (
    "corpus",
    "corpus_annotation",
    "text",
    "node",
    "node_annotation",
    "component",
    "rank",
    "edge_annotation",
)

# Staging tables built by the pipeline itself rather than loaded from a file.
CREATED_TABLES: tuple[str, ...] = ("nodeidmapping",)

VERSION_FILE = "annis.version"
EXT_DATA_DIR = "ExtData"
EXT_FILE_MARKER = "[ExtFile]"

EXAMPLE_QUERIES_TABLE = "example_queries"
RESOLVER_TABLE = "resolver_vis_map"

NULL_TOKEN = "NULL"

DEFAULT_MIME_TYPES: dict[str, str] = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "pdf": "application/pdf",
    "xml": "application/xml",
    "json": "application/json",
    "css": "text/css",
    "html": "text/html",
    "txt": "text/plain",
    "png": "image/png",
    "jpg": "image/jpeg",
}

# The top-level corpus row of every import; document rows carry "DOCUMENT".
CORPUS_TYPE = "CORPUS"
DOCUMENT_TYPE = "DOCUMENT"

FACTS_TABLE_TEMPLATE = "facts_{corpus_id:d}"
ANNOTATIONS_TABLE_TEMPLATE = "annotations_{corpus_id:d}"
