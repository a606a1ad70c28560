"""Cross-cutting helpers: constants, path utilities, JSONL and sidecar I/O."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator

from .errors import MissingMetadataError, PreconditionError

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BATCH_SIZE = 500
DEFAULT_INDEX_NAME = "documents"
DEFAULT_ES_URL = "http://localhost:9200"

# Circuit breaker policy; only the batch size is configurable.
BATCH_WARNING_RATIO = 0.05
ABORT_MIN_FAILURES = 30
ABORT_FAILURE_RATIO = 0.6

SENTINEL_TITLE = "EXTRACTO SOCIETARIO ELECTRÓNICO"
TITLE_SENTINEL_KEY = "dc:title"
TITLE_KEYS = ("title",)
CVE_KEYS = ("Keyword", "meta:keyword", "pdf:docinfo:keywords")
DATE_KEYS = (
    "Creation-Date",
    "date",
    "created",
    "meta:creation-date",
    "pdf:docinfo:created",
)

INDEX_SCHEMA: dict[str, Any] = {
    "properties": {
        "title": {"type": "text"},
        "file_name": {"type": "text"},
        "content": {"type": "text"},
        "path": {"type": "keyword"},
        "tag": {"type": "keyword"},
        "cve": {"type": "keyword"},
        "date": {"type": "date", "ignore_malformed": True},
    }
}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.114 Safari/537.36"
)
DOWNLOAD_TIMEOUT_S = 40


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def default_tag(input_dir: Path) -> str:
    """Tag used when the caller does not supply one: the directory name."""
    return input_dir.resolve().name


def check_input_dir(input_dir: Path) -> None:
    if not input_dir.is_dir():
        raise PreconditionError(f"Input directory {input_dir} is not a valid path.")


def check_output_file(output_file: Path) -> None:
    """Fail early when *output_file* cannot be appended to."""
    parent = output_file.parent
    if not parent.is_dir():
        raise PreconditionError(f"Output directory {parent} is not a valid path.")
    if output_file.is_dir():
        raise PreconditionError(f"Output file {output_file} is a directory.")
    target = output_file if output_file.exists() else parent
    if not os.access(target, os.W_OK):
        raise PreconditionError(f"Output file {output_file} is not writable.")


def sidecar_path(path: Path) -> Path:
    return path.with_suffix(".json")


def load_sidecar(path: Path) -> dict[str, Any]:
    """Read the ``<stem>.json`` provenance file written next to *path*."""
    meta_path = sidecar_path(path)
    if not meta_path.is_file():
        raise MissingMetadataError(f"JSON file {meta_path} does not exist.")
    try:
        with open(meta_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (json.JSONDecodeError, OSError, ValueError) as exc:
        raise MissingMetadataError(f"JSON file {meta_path} is unreadable: {exc}") from exc
    if not isinstance(data, dict):
        raise MissingMetadataError(f"JSON file {meta_path} is not an object.")
    return data


# ---------------------------------------------------------------------------
# JSONL I/O
# ---------------------------------------------------------------------------


def iter_jsonl(path: Path) -> Iterator[tuple[int, Any]]:
    """Yield ``(line_number, parsed_or_None)`` for every non-blank line."""
    with open(path, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield lineno, json.loads(line)
            except json.JSONDecodeError:
                log.warning("%s:%s is not valid JSON", path, lineno)
                yield lineno, None


def existing_file_names(output_file: Path) -> set[str]:
    """File names already present in a JSONL output file."""
    if not output_file.exists():
        return set()
    names: set[str] = set()
    for _lineno, item in iter_jsonl(output_file):
        if isinstance(item, dict) and item.get("file_name"):
            names.add(str(item["file_name"]))
    return names
