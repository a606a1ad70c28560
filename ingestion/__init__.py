"""Document extraction + JSONL / Elasticsearch ingestion pipeline.

Public API -- all symbols that tests and external code import live here.
Internally the code is split across focused submodules; this file
re-exports the stable public surface so ``from ingestion import X`` works.
"""

from .breaker import CircuitBreaker, GuardedSink
from .errors import (
    CircuitBreakerTripped,
    ExtractionError,
    IndexBootstrapError,
    IngestionError,
    MissingMetadataError,
    PreconditionError,
    SearchUnavailableError,
)
from .extraction import (
    DoclingExtractor,
    TikaExtractor,
    create_extractor,
    extract_record,
    quiet_output,
)
from .models import Record, RunContext, RunCounters
from .normalize import clean_text, find_cve, find_date, first_present, normalize_record
from .runner import extract_batch, index_records, run_batched, run_pipeline
from .sinks import AppendSink, IndexedSink, bulk_index, connect, ensure_index, load_records
from .sources import (
    Link,
    discover_documents,
    download_file,
    download_links,
    load_links,
    pending_links,
    write_metadata,
)
from .utils import DEFAULT_BATCH_SIZE, INDEX_SCHEMA, default_tag, existing_file_names

__all__ = [
    # Models
    "Record",
    "RunContext",
    "RunCounters",
    # Errors
    "IngestionError",
    "ExtractionError",
    "MissingMetadataError",
    "PreconditionError",
    "SearchUnavailableError",
    "IndexBootstrapError",
    "CircuitBreakerTripped",
    # Constants / utils
    "DEFAULT_BATCH_SIZE",
    "INDEX_SCHEMA",
    "default_tag",
    "existing_file_names",
    # Normalizer
    "clean_text",
    "find_cve",
    "find_date",
    "first_present",
    "normalize_record",
    # Extraction
    "TikaExtractor",
    "DoclingExtractor",
    "create_extractor",
    "extract_record",
    "quiet_output",
    # Pipeline
    "run_pipeline",
    "extract_batch",
    "run_batched",
    "index_records",
    # Sinks
    "AppendSink",
    "IndexedSink",
    "bulk_index",
    "connect",
    "ensure_index",
    "load_records",
    "CircuitBreaker",
    "GuardedSink",
    # Sources
    "Link",
    "discover_documents",
    "load_links",
    "pending_links",
    "download_file",
    "write_metadata",
    "download_links",
]
