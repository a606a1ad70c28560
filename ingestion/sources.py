"""Input discovery and the link-file downloader."""

from __future__ import annotations

import csv
import datetime
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import requests
from tqdm import tqdm

from .errors import PreconditionError
from .utils import DEFAULT_USER_AGENT, DOWNLOAD_TIMEOUT_S

log = logging.getLogger(__name__)

LINK_COLUMNS = ("url", "cve", "date")
LINK_CVE_PATTERN = re.compile(r"([A-Z0-9]{5,14})(?:^|\s|$)", re.IGNORECASE)
URL_PATTERN = re.compile(r"^https?://")


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------


def discover_documents(
    folder: Path,
    pattern: str = "*",
    *,
    exclude_sidecars: bool = False,
) -> list[Path]:
    """Regular files directly inside *folder* matching *pattern*."""
    if not folder.is_dir():
        return []
    files = [p for p in folder.glob(pattern) if p.is_file()]
    if exclude_sidecars:
        files = [p for p in files if p.suffix.lower() != ".json"]
    return sorted(files)


# ---------------------------------------------------------------------------
# Link file
# ---------------------------------------------------------------------------


@dataclass
class Link:
    url: str
    cve: str
    date: datetime.date

    @property
    def file_stem(self) -> str:
        return self.cve


def _clean_cve(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "", value.replace("-", ""))


def load_links(link_file: Path) -> list[Link]:
    """Read and validate a ``url,cve,date`` CSV.

    Duplicate URLs are dropped (first occurrence wins), ``http://`` links
    are upgraded to ``https://`` and CVEs are reduced to alphanumerics.
    Any invalid row makes the whole file invalid.
    """
    if not link_file.is_file():
        raise PreconditionError(f"Link file {link_file} is not a valid path.")

    with open(link_file, newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        columns = reader.fieldnames or []
        missing = [c for c in LINK_COLUMNS if c not in columns]
        if missing:
            raise PreconditionError(
                f"Link file {link_file} does not have the required columns "
                f"(url,cve,date); missing {', '.join(missing)}."
            )
        rows = list(reader)

    links: list[Link] = []
    seen: set[str] = set()
    upgraded = 0
    for lineno, row in enumerate(rows, start=2):
        url = (row.get("url") or "").strip()
        if url in seen:
            continue
        seen.add(url)

        try:
            parsed_date = datetime.date.fromisoformat((row.get("date") or "").strip())
        except ValueError as exc:
            raise PreconditionError(
                f"Link file {link_file} line {lineno}: invalid date {row.get('date')!r}."
            ) from exc

        if url.startswith("http://"):
            url = "https://" + url[len("http://") :]
            upgraded += 1
        if not URL_PATTERN.match(url):
            raise PreconditionError(
                f"Link file {link_file} line {lineno}: invalid URL {url!r}."
            )

        cve = _clean_cve(row.get("cve") or "")
        if not LINK_CVE_PATTERN.search(cve):
            raise PreconditionError(
                f"Link file {link_file} line {lineno}: invalid CVE {row.get('cve')!r}."
            )
        links.append(Link(url=url, cve=cve, date=parsed_date))

    if upgraded:
        log.info("Link file %s contains %s HTTP links. Auto-upgraded to HTTPS.", link_file, upgraded)
    return links


def pending_links(links: list[Link], output_dir: Path) -> list[Link]:
    """Drop links whose document was already downloaded into *output_dir*."""
    pending = [link for link in links if not (output_dir / f"{link.file_stem}.pdf").exists()]
    if len(pending) < len(links):
        log.info("Skipping %s already downloaded files.", len(links) - len(pending))
    return pending


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def download_file(url: str, dest: Path, *, user_agent: str = DEFAULT_USER_AGENT) -> bool:
    """Fetch *url* into *dest*. No retries; failures are logged."""
    headers = {"Accept": "application/pdf", "User-Agent": user_agent}
    try:
        response = requests.get(url, headers=headers, timeout=DOWNLOAD_TIMEOUT_S)
        response.raise_for_status()
    except requests.RequestException as exc:
        log.error("Error while downloading %s: %s", url, exc)
        return False
    try:
        dest.write_bytes(response.content)
    except OSError as exc:
        log.error("Error while saving %s to %s: %s", url, dest, exc)
        return False
    return True


def write_metadata(link: Link, dest: Path) -> bool:
    """Write the provenance sidecar read back by ``--sidecar`` extraction."""
    metadata = {"url": link.url, "cve": link.cve, "date": link.date.isoformat()}
    try:
        with open(dest, "w", encoding="utf-8") as fh:
            json.dump(metadata, fh, ensure_ascii=False)
            fh.write("\n")
    except OSError as exc:
        log.error("Error while writing metadata to %s: %s", dest, exc)
        return False
    return True


def _download_one(link: Link, output_dir: Path, user_agent: str) -> bool:
    pdf_path = output_dir / f"{link.file_stem}.pdf"
    if not download_file(link.url, pdf_path, user_agent=user_agent):
        log.warning("Skipping %s because it could not be downloaded.", link.url)
        return False
    if not write_metadata(link, output_dir / f"{link.file_stem}.json"):
        log.warning("Skipping %s because its metadata could not be written.", link.url)
        return False
    return True


def download_links(
    links: list[Link],
    output_dir: Path,
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    max_workers: int = 8,
) -> tuple[int, int]:
    """Download every link in parallel; returns (downloaded, failed)."""
    if not output_dir.is_dir():
        raise PreconditionError(f"Output directory {output_dir} is not a valid path.")

    downloaded = failed = 0
    if not links:
        return downloaded, failed
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(_download_one, link, output_dir, user_agent): link
            for link in links
        }
        for future in tqdm(as_completed(futures), total=len(futures), desc="Downloading"):
            if future.result():
                downloaded += 1
            else:
                failed += 1
    log.info("Downloads finished: %s downloaded, %s failed.", downloaded, failed)
    return downloaded, failed
