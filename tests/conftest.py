"""Shared fixtures for the ingestion test suite.

Extraction is faked: documents are small text files whose content is the
"extracted" text, so no Tika server or Elasticsearch cluster is needed.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

import pytest

from ingestion import Record

# ---------------------------------------------------------------------------
# Configure verbose logging for test debugging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)
log = logging.getLogger("conftest")


class FakeExtractor:
    """Returns the file's text; files named ``broken*`` raise."""

    def __init__(self, metadata: dict[str, str] | None = None):
        self.metadata = metadata or {}
        self.calls: list[Path] = []
        self._lock = threading.Lock()

    def __call__(self, path: Path) -> tuple[dict[str, str], str]:
        with self._lock:
            self.calls.append(path)
        if path.name.startswith("broken"):
            raise RuntimeError(f"corrupt document {path.name}")
        metadata = {"title": path.stem, **self.metadata}
        return metadata, path.read_text(encoding="utf-8")


class RecordingSink:
    """In-memory sink; ``fail_all`` reports every record as failed."""

    def __init__(self, fail_all: bool = False):
        self.fail_all = fail_all
        self.batches: list[list[Record]] = []
        self.closed = False
        self._lock = threading.Lock()

    def deliver(self, records: list[Record]) -> tuple[int, int]:
        with self._lock:
            self.batches.append(list(records))
        if self.fail_all:
            return 0, len(records)
        return len(records), 0

    def close(self) -> None:
        self.closed = True

    @property
    def records(self) -> list[Record]:
        return [r for batch in self.batches for r in batch]


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """Directory with 20 good documents, 3 empty ones and 2 broken ones."""
    folder = tmp_path / "contracts"
    folder.mkdir()
    for i in range(20):
        (folder / f"doc{i:02d}.pdf").write_text(
            f"  Contract {i}\n\n\nCVE: ABC{i:05d}  signed  ", encoding="utf-8"
        )
    for i in range(3):
        (folder / f"empty{i}.pdf").write_text(" \n\n ", encoding="utf-8")
    for i in range(2):
        (folder / f"broken{i}.pdf").write_text("x", encoding="utf-8")
    log.info("docs_dir fixture: %s", folder)
    return folder


@pytest.fixture
def sample_record() -> Record:
    return Record(
        title="Acta",
        file_name="acta.pdf",
        path="docs/acta.pdf",
        tag="docs",
        date="2021-03-04T10:00:00Z",
        cve="ABCD12345",
        content="Texto del acta",
    )
