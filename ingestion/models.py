"""Shared data models for the ingestion pipeline."""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

RECORD_FIELDS = ("title", "file_name", "path", "tag", "date", "cve", "content")


@dataclass
class Record:
    """One normalized document, ready for delivery to a sink."""

    title: str
    file_name: str
    path: str
    tag: str
    date: str = ""
    cve: str = ""
    content: str = ""
    url: Optional[str] = None

    @property
    def doc_id(self) -> str:
        """Stable identity derived from the file name."""
        return hashlib.sha1(self.file_name.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, str]:
        data = {name: getattr(self, name) for name in RECORD_FIELDS}
        if self.url is not None:
            data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        values = {name: str(data.get(name) or "") for name in RECORD_FIELDS}
        url = data.get("url")
        return cls(**values, url=None if url is None else str(url))


class RunCounters:
    """Per-run success/failure totals, safe to bump from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._succeeded = 0
        self._failed = 0

    def succeed(self, n: int = 1) -> None:
        with self._lock:
            self._succeeded += n

    def fail(self, n: int = 1) -> None:
        with self._lock:
            self._failed += n

    @property
    def succeeded(self) -> int:
        return self._succeeded

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def total(self) -> int:
        with self._lock:
            return self._succeeded + self._failed

    def __repr__(self) -> str:
        return f"RunCounters(succeeded={self._succeeded}, failed={self._failed})"


@dataclass
class RunContext:
    """Everything a worker needs for one run of the pipeline.

    A fresh context (and therefore fresh counters) is built for every
    invocation; nothing here is shared between runs.
    """

    tag: str
    extractor: Optional[Callable[[Path], tuple[dict[str, str], str]]] = None
    sink: Any = None
    use_sidecar: bool = False
    progress: Any = None
    counters: RunCounters = field(default_factory=RunCounters)

    def advance(self, n: int = 1) -> None:
        if self.progress is not None:
            self.progress.update(n)
