"""Turn raw extractor output (metadata, text) into a :class:`Record`.

Everything here is pure: no I/O and no shared state, so the same input
always produces the same record.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional

from .models import Record
from .utils import CVE_KEYS, DATE_KEYS, SENTINEL_TITLE, TITLE_KEYS, TITLE_SENTINEL_KEY

log = logging.getLogger(__name__)

CVE_PATTERN = re.compile(r"(?:\(?CVE\)??: ?)([A-Z0-9]{5,14})(?:^|\s|$)", re.IGNORECASE)

_SPACE_RUNS = re.compile(r" {2,}")
_NEWLINE_RUNS = re.compile(r"\n{2,}")


def first_present(
    metadata: Mapping[str, Any],
    keys: Iterable[str],
    default: str = "",
) -> Any:
    """Return the value of the first key in *keys* present in *metadata*."""
    for key in keys:
        value = metadata.get(key)
        if value is not None:
            return value
    return default


def clean_text(metadata: Mapping[str, Any], text: str) -> str:
    text = _SPACE_RUNS.sub(" ", text.strip())
    if metadata.get(TITLE_SENTINEL_KEY, "") != SENTINEL_TITLE:
        return _NEWLINE_RUNS.sub("\n", text)
    # Company-register extracts wrap lines mid-word.
    return text.replace("\n", "").replace("\t", " ")


def find_cve(metadata: Mapping[str, Any], text: str) -> str:
    """Find the document's CVE in the keyword metadata, falling back to *text*."""
    for key in CVE_KEYS:
        value = metadata.get(key)
        if value is None:
            continue
        match = CVE_PATTERN.search(str(value))
        if match:
            return match.group(1)
    match = CVE_PATTERN.search(text)
    return match.group(1) if match else ""


def find_date(metadata: Mapping[str, Any]) -> str:
    return str(first_present(metadata, DATE_KEYS))


def normalize_record(
    metadata: Mapping[str, Any],
    text: str,
    *,
    file_name: str,
    path: str,
    tag: str,
    url: Optional[str] = None,
    cve: Optional[str] = None,
    date: Optional[str] = None,
) -> Record:
    """Build a record from extractor output.

    ``cve`` and ``date`` are scanned from the metadata/text unless the
    caller already knows them (e.g. from a download sidecar).
    """
    content = clean_text(metadata, text)
    if cve is None:
        cve = find_cve(metadata, content)
    if date is None:
        date = find_date(metadata)
    if not cve:
        log.warning("CVE not found in %s", path or file_name)

    return Record(
        title=str(first_present(metadata, TITLE_KEYS)),
        file_name=file_name,
        path=path,
        tag=tag,
        date=date,
        cve=cve,
        content=content,
        url=url,
    )
