"""Delivery sinks: JSON Lines file and Elasticsearch bulk index.

Both sinks share one contract, ``deliver(records) -> (uploaded, failed)``,
so the pipeline and the circuit breaker never need to know which one they
are talking to.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from .errors import IndexBootstrapError, SearchUnavailableError
from .models import Record
from .utils import INDEX_SCHEMA, iter_jsonl

log = logging.getLogger(__name__)


class Sink(Protocol):
    def deliver(self, records: list[Record]) -> tuple[int, int]: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# JSON Lines
# ---------------------------------------------------------------------------


class AppendSink:
    """Append records to a JSONL file through one lock-guarded writer."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._fh = open(path, "a", encoding="utf-8")

    def deliver(self, records: list[Record]) -> tuple[int, int]:
        written = failed = 0
        for record in records:
            line = json.dumps(record.to_dict(), ensure_ascii=False)
            with self._lock:
                try:
                    self._fh.write(line + "\n")
                    self._fh.flush()
                except (OSError, ValueError) as exc:
                    log.error("Error while writing %s to %s: %s", record.file_name, self.path, exc)
                    failed += 1
                    continue
            written += 1
        return written, failed

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def __enter__(self) -> AppendSink:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def load_records(path: Path) -> Iterable[Optional[Record]]:
    """Read records back from a JSONL file; malformed lines yield ``None``."""
    for _lineno, item in iter_jsonl(path):
        if not isinstance(item, dict):
            yield None
            continue
        yield Record.from_dict(item)


# ---------------------------------------------------------------------------
# Elasticsearch
# ---------------------------------------------------------------------------


def connect(url: str, *, api_key: Optional[str] = None, timeout: int = 60) -> Any:
    """Create an Elasticsearch client and check that the cluster answers."""
    from elasticsearch import Elasticsearch

    client = Elasticsearch(url, api_key=api_key, request_timeout=timeout)
    try:
        alive = client.ping()
    except Exception as exc:
        raise SearchUnavailableError(f"Elasticsearch at {url} is unreachable: {exc}") from exc
    if not alive:
        raise SearchUnavailableError(f"Elasticsearch at {url} did not answer ping")
    log.info("Connected to Elasticsearch at %s", url)
    return client


def ensure_index(client: Any, index_name: str, schema: dict[str, Any] = INDEX_SCHEMA) -> bool:
    """Create *index_name* with *schema* if it is missing.

    Returns True when the index was created by this call.
    """
    try:
        if client.indices.exists(index=index_name):
            log.info("Index %s already exists", index_name)
            return False
        log.info("Index %s not found, creating it", index_name)
        client.indices.create(index=index_name, mappings=schema)
    except Exception as exc:
        raise IndexBootstrapError(f"Could not create index {index_name}: {exc}") from exc
    return True


def _index_actions(records: list[Record], index_name: str) -> Iterable[dict[str, Any]]:
    for record in records:
        source = record.to_dict()
        if not source["date"]:
            source.pop("date")
        yield {"_index": index_name, "_id": record.doc_id, "_source": source}


def bulk_index(client: Any, records: list[Record], index_name: str) -> tuple[int, int]:
    """Submit *records* in one bulk request; returns (uploaded, failed).

    Transport-level errors count every record of the batch as failed.
    """
    from elasticsearch import ApiError, TransportError, helpers

    try:
        uploaded, failed = helpers.bulk(
            client,
            _index_actions(records, index_name),
            chunk_size=max(1, len(records)),
            stats_only=True,
            raise_on_error=False,
            raise_on_exception=False,
        )
    except (ApiError, TransportError) as exc:
        log.error("Bulk request to %s failed: %s", index_name, exc)
        return 0, len(records)
    return uploaded, failed


class IndexedSink:
    """Bulk-submit record batches to an Elasticsearch index."""

    def __init__(self, client: Any, index_name: str):
        self.client = client
        self.index_name = index_name

    def deliver(self, records: list[Record]) -> tuple[int, int]:
        if not records:
            return 0, 0
        return bulk_index(self.client, records, self.index_name)

    def close(self) -> None:
        self.client.close()
