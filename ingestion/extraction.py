"""Document extractors (Tika, Docling) and the per-file extraction worker."""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .errors import ExtractionError
from .models import Record
from .normalize import normalize_record
from .utils import load_sidecar

log = logging.getLogger(__name__)

Extractor = Callable[[Path], tuple[dict[str, str], str]]

NOISY_LOGGERS = ("tika", "tika.tika", "docling", "pdfminer", "PIL")


# ---------------------------------------------------------------------------
# Output suppression
# ---------------------------------------------------------------------------

_quiet_lock = threading.Lock()
_quiet_depth = 0
_saved_streams: tuple[Any, Any] | None = None
_saved_levels: dict[str, int] = {}
_devnull: Any = None


@contextlib.contextmanager
def quiet_output() -> Iterator[None]:
    """Silence stdout/stderr and extractor loggers while any worker is inside.

    ``sys.stdout``/``sys.stderr`` are process-wide, so concurrent workers
    share one redirection: the first to enter installs it and the last to
    leave restores the original streams. Logging handlers created before
    the run keep writing to the streams they captured at creation.
    """
    global _quiet_depth, _saved_streams, _devnull
    with _quiet_lock:
        if _quiet_depth == 0:
            _devnull = open(os.devnull, "w")
            _saved_streams = (sys.stdout, sys.stderr)
            sys.stdout = sys.stderr = _devnull
            for name in NOISY_LOGGERS:
                logger = logging.getLogger(name)
                _saved_levels[name] = logger.level
                logger.setLevel(logging.CRITICAL)
        _quiet_depth += 1
    try:
        yield
    finally:
        with _quiet_lock:
            _quiet_depth -= 1
            if _quiet_depth == 0:
                sys.stdout, sys.stderr = _saved_streams
                _saved_streams = None
                for name, level in _saved_levels.items():
                    logging.getLogger(name).setLevel(level)
                _saved_levels.clear()
                _devnull.close()
                _devnull = None


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def _flatten_metadata(raw: Optional[dict[str, Any]]) -> dict[str, str]:
    """Tika reports repeated fields as lists; keep the first value."""
    metadata: dict[str, str] = {}
    for key, value in (raw or {}).items():
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
        if value is None:
            continue
        metadata[key] = str(value)
    return metadata


class TikaExtractor:
    """Extract text and metadata through an Apache Tika server."""

    def __init__(self, server_endpoint: Optional[str] = None, timeout: int = 300):
        from tika import tika as tika_client

        if server_endpoint:
            # talk to the given server instead of spawning a local one
            tika_client.TikaClientOnly = True
        self.server_endpoint = server_endpoint
        self.timeout = timeout

    def __call__(self, path: Path) -> tuple[dict[str, str], str]:
        from tika import parser

        kwargs: dict[str, Any] = {"requestOptions": {"timeout": self.timeout}}
        if self.server_endpoint:
            kwargs["serverEndpoint"] = self.server_endpoint
        parsed = parser.from_file(str(path), **kwargs)
        status = parsed.get("status")
        if status != 200:
            raise ExtractionError(f"Tika returned status {status} for {path}")
        return _flatten_metadata(parsed.get("metadata")), parsed.get("content") or ""


class DoclingExtractor:
    """Convert documents to Markdown with a Docling ``DocumentConverter``."""

    def __init__(self, *, num_threads: int = 8, enable_ocr: bool = False):
        t0 = time.perf_counter()
        from docling.datamodel.accelerator_options import AcceleratorOptions
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        pipeline_options = PdfPipelineOptions(
            do_ocr=enable_ocr,
            accelerator_options=AcceleratorOptions(num_threads=max(1, num_threads)),
        )
        self.converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )
        log.info(
            "Docling converter initialized (ocr=%s) in %.2fs",
            enable_ocr,
            time.perf_counter() - t0,
        )

    def __call__(self, path: Path) -> tuple[dict[str, str], str]:
        result = self.converter.convert(source=str(path))
        doc = result.document
        metadata = {"title": doc.name} if getattr(doc, "name", None) else {}
        return metadata, doc.export_to_markdown()


def create_extractor(
    kind: str = "tika",
    *,
    tika_server: Optional[str] = None,
    num_threads: int = 8,
) -> Extractor:
    """Build the extractor named by *kind* (``tika`` or ``docling``)."""
    if kind == "tika":
        return TikaExtractor(server_endpoint=tika_server)
    if kind == "docling":
        return DoclingExtractor(num_threads=num_threads)
    raise ValueError(f"Unknown extractor: {kind}")


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


def extract_record(
    path: Path,
    tag: str,
    extractor: Extractor,
    *,
    use_sidecar: bool = False,
) -> Optional[Record]:
    """Extract and normalize one file.

    Returns ``None`` when the cleaned content is empty. Extractor errors
    and missing sidecars propagate to the caller.
    """
    provenance: dict[str, Any] = {}
    if use_sidecar:
        sidecar = load_sidecar(path)
        provenance = {
            "cve": str(sidecar.get("cve") or ""),
            "date": str(sidecar.get("date") or ""),
            "url": str(sidecar.get("url") or ""),
        }

    with quiet_output():
        metadata, text = extractor(path)

    if use_sidecar:
        record = normalize_record(
            metadata, text or "", file_name=path.stem, path="", tag=tag, **provenance
        )
    else:
        record = normalize_record(
            metadata,
            text or "",
            file_name=path.name,
            path=os.path.relpath(path),
            tag=tag,
        )
    if not record.content:
        return None
    return record
