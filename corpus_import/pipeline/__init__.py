"""Import orchestration: per-import context, cancellation, and the importer."""
