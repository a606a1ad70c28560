"""Concurrent extraction and batched delivery.

``run_pipeline`` streams every successful record straight into the sink
from the worker that produced it (JSONL output). ``run_batched`` walks the
file list in fixed-size batches, extracting each batch in parallel and then
delivering it in one call (search index). Both count every dispatched file
exactly once, as succeeded or failed.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Collection, Iterable, Optional

from tqdm import tqdm

from .errors import CircuitBreakerTripped
from .extraction import extract_record
from .models import Record, RunContext, RunCounters
from .utils import DEFAULT_BATCH_SIZE

log = logging.getLogger(__name__)


def record_name(path: Path, use_sidecar: bool = False) -> str:
    """The ``file_name`` a record extracted from *path* will carry."""
    return path.stem if use_sidecar else path.name


def _extract_one(path: Path, context: RunContext) -> Optional[Record]:
    """Extract *path*; ``None`` means the file failed and was logged."""
    try:
        record = extract_record(
            path,
            context.tag,
            context.extractor,
            use_sidecar=context.use_sidecar,
        )
    except Exception as exc:
        log.error("Error while extracting %s: %s", path, exc)
        log.debug("Extraction traceback for %s", path, exc_info=True)
        return None
    if record is None:
        log.warning("Skipping %s because it seems empty.", path)
    return record


def _extract_and_write(path: Path, context: RunContext) -> bool:
    record = _extract_one(path, context)
    if record is None:
        context.counters.fail()
        return False
    try:
        written, failed = context.sink.deliver([record])
    except CircuitBreakerTripped:
        raise
    except Exception as exc:
        log.error("Error while writing %s: %s", path, exc)
        context.counters.fail()
        return False
    if failed or not written:
        context.counters.fail()
        return False
    context.counters.succeed()
    return True


def _fan_out(
    files: list[Path],
    task: Callable[[Path], Any],
    context: RunContext,
    max_workers: int,
) -> list[Any]:
    """Run *task* over *files* on a thread pool; results in completion order."""
    results: list[Any] = []
    if not files:
        return results
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {executor.submit(task, path): path for path in files}
        for future in as_completed(futures):
            results.append(future.result())
            context.advance()
    return results


def _warn_single_thread(max_workers: int) -> None:
    if max_workers <= 1:
        log.warning(
            "Only one worker available, performance will be significantly "
            "impacted. Consider raising --max-workers."
        )


# ---------------------------------------------------------------------------
# Streaming (JSONL)
# ---------------------------------------------------------------------------


def run_pipeline(
    files: list[Path],
    context: RunContext,
    *,
    max_workers: int,
    skip: Collection[str] = (),
) -> RunCounters:
    """Extract *files* in parallel and write each record through the sink.

    Files whose record name is in *skip* are not dispatched.
    """
    pending = [p for p in files if record_name(p, context.use_sidecar) not in skip]
    skipped = len(files) - len(pending)
    if skipped:
        log.info("Skipping %s files already present in the output.", skipped)

    log.info("Loading %s documents with %s threads...", len(pending), max_workers)
    _warn_single_thread(max_workers)

    t0 = time.perf_counter()
    with tqdm(total=len(files), desc="Loading documents") as progress:
        context.progress = progress
        context.advance(skipped)
        _fan_out(pending, lambda path: _extract_and_write(path, context), context, max_workers)
    context.progress = None

    log.info(
        "Loading finished: %s documents written, %s documents failed (%.2fs).",
        context.counters.succeeded,
        context.counters.failed,
        time.perf_counter() - t0,
    )
    return context.counters


# ---------------------------------------------------------------------------
# Batched (search index)
# ---------------------------------------------------------------------------


def extract_batch(
    files: list[Path],
    context: RunContext,
    *,
    max_workers: int,
) -> list[Record]:
    """Extract one batch in parallel; failed files are counted, not returned."""
    results = _fan_out(files, lambda path: _extract_one(path, context), context, max_workers)
    records = [r for r in results if r is not None]
    context.counters.fail(len(results) - len(records))
    return records


def _deliver(records: list[Record], context: RunContext) -> None:
    try:
        uploaded, failed = context.sink.deliver(records)
    except CircuitBreakerTripped as exc:
        context.counters.succeed(exc.batch[0])
        context.counters.fail(exc.batch[1])
        raise
    context.counters.succeed(uploaded)
    context.counters.fail(failed)
    log.info("Batch delivered: %s uploaded, %s failed", uploaded, failed)


def run_batched(
    files: list[Path],
    context: RunContext,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_workers: int,
    extract_only: bool = False,
) -> RunCounters:
    """Extract and deliver *files* one batch at a time.

    With *extract_only* the batches are extracted and counted but never
    delivered. :class:`CircuitBreakerTripped` from the sink propagates after
    the triggering batch has been counted.
    """
    n_batches = (len(files) + batch_size - 1) // batch_size
    log.info(
        "Processing %s documents in %s batches of %s with %s threads...",
        len(files),
        n_batches,
        batch_size,
        max_workers,
    )
    _warn_single_thread(max_workers)

    with tqdm(total=len(files), desc="Indexing documents") as progress:
        context.progress = progress
        try:
            for batch_no, start in enumerate(range(0, len(files), batch_size), start=1):
                batch = files[start : start + batch_size]
                log.debug("Batch %s/%s: %s files", batch_no, n_batches, len(batch))
                records = extract_batch(batch, context, max_workers=max_workers)
                if extract_only:
                    context.counters.succeed(len(records))
                    continue
                _deliver(records, context)
        finally:
            context.progress = None

    log.info(
        "Indexing finished: %s documents uploaded, %s documents failed.",
        context.counters.succeeded,
        context.counters.failed,
    )
    return context.counters


def index_records(
    records: Iterable[Optional[Record]],
    context: RunContext,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> RunCounters:
    """Deliver already-extracted records in batches.

    ``None`` entries (unreadable input lines) and records without content
    count as failures.
    """
    batch: list[Record] = []
    with tqdm(desc="Indexing records") as progress:
        context.progress = progress
        try:
            for record in records:
                context.advance()
                if record is None or not record.content:
                    context.counters.fail()
                    continue
                batch.append(record)
                if len(batch) >= batch_size:
                    _deliver(batch, context)
                    batch = []
            if batch:
                _deliver(batch, context)
        finally:
            context.progress = None

    log.info(
        "Indexing finished: %s documents uploaded, %s documents failed.",
        context.counters.succeeded,
        context.counters.failed,
    )
    return context.counters
