"""Import pipeline components: format detection, staging, transforms, offsets,
conflict resolution, external data, facts materialization and corpus config."""
