"""CLI entrypoint for document ingestion.

Usage:
    python -m ingestion convert ./docs ./out/docs.jsonl
    python -m ingestion convert ./docs ./out/docs.jsonl --tag 2023 --skip-existing
    python -m ingestion convert ./downloads ./out/docs.jsonl --sidecar
    python -m ingestion index ./docs --index documents --batch-size 500
    python -m ingestion index ./out/docs.jsonl --es-url http://localhost:9200
    python -m ingestion index ./docs --extract-only
    python -m ingestion download links.csv ./downloads
"""

from __future__ import annotations

import argparse
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import time
from pathlib import Path

from .errors import CircuitBreakerTripped, IngestionError, PreconditionError
from .models import RunCounters
from .utils import DEFAULT_BATCH_SIZE, DEFAULT_ES_URL, DEFAULT_INDEX_NAME, DEFAULT_USER_AGENT

log = logging.getLogger(__name__)


def _recommended_runtime_defaults() -> dict[str, int]:
    cpu_count = max(1, os.cpu_count() or 1)
    return {
        "max_workers": cpu_count,
        "download_workers": min(32, cpu_count * 4),
    }


def _setup_logging(
    *,
    verbose: bool,
    detailed_logging: bool,
    log_file: Path | None,
) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(root_level)

    console_fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    detailed_fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "%(threadName)s | %(filename)s:%(lineno)d | %(message)s"
    )
    formatter = logging.Formatter(
        detailed_fmt if detailed_logging else console_fmt,
        "%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(root_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=20 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(detailed_fmt, "%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("elastic_transport").setLevel(logging.WARNING)
    logging.getLogger("tika").setLevel(logging.WARNING)
    logging.getLogger("docling").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--detailed-logging",
        action="store_true",
        help="Enable detailed logging (thread, file/line)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional rotating log file path",
    )


def _add_extraction_arguments(parser: argparse.ArgumentParser, max_workers: int) -> None:
    parser.add_argument("--tag", help="Tag to be used for the documents (default: directory name)")
    parser.add_argument(
        "--sidecar",
        action="store_true",
        help="Read CVE, date and URL from the <name>.json file next to each document",
    )
    parser.add_argument(
        "--pattern",
        default="*",
        help="Glob pattern selecting documents inside the input directory (default: *)",
    )
    parser.add_argument(
        "--extractor",
        choices=["tika", "docling"],
        default="tika",
        help="Document extractor (default: tika)",
    )
    parser.add_argument(
        "--tika-server",
        default=os.environ.get("TIKA_SERVER_ENDPOINT"),
        help="Tika server endpoint; a local server is started when omitted",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=max_workers,
        help=f"Extraction worker threads (default: {max_workers})",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    tuned_defaults = _recommended_runtime_defaults()

    parser = argparse.ArgumentParser(description="Document extraction and indexing pipeline")
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="Extract documents into a JSONL file")
    convert.add_argument("input_dir", type=Path, help="Directory to be loaded")
    convert.add_argument("output_file", type=Path, help="JSONL file to append to")
    convert.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip documents whose file name is already in the output file",
    )
    _add_extraction_arguments(convert, tuned_defaults["max_workers"])
    _add_common_arguments(convert)

    index = commands.add_parser("index", help="Extract documents into Elasticsearch")
    index.add_argument(
        "source",
        type=Path,
        help="Directory to be loaded, or a JSONL file written by 'convert'",
    )
    index.add_argument(
        "--es-url",
        default=os.environ.get("ELASTICSEARCH_URL", DEFAULT_ES_URL),
        help=f"Elasticsearch URL (default: {DEFAULT_ES_URL})",
    )
    index.add_argument(
        "--es-api-key",
        default=os.environ.get("ELASTICSEARCH_API_KEY"),
        help="Elasticsearch API key",
    )
    index.add_argument(
        "--index",
        default=DEFAULT_INDEX_NAME,
        help=f"Target index (default: {DEFAULT_INDEX_NAME})",
    )
    index.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Documents per bulk request (default: {DEFAULT_BATCH_SIZE})",
    )
    index.add_argument(
        "--extract-only",
        action="store_true",
        help="Extract the documents without uploading them",
    )
    _add_extraction_arguments(index, tuned_defaults["max_workers"])
    _add_common_arguments(index)

    download = commands.add_parser("download", help="Download documents from a link file")
    download.add_argument("link_file", type=Path, help="CSV with the url, cve and date of each document")
    download.add_argument("output_dir", type=Path, help="Directory where to output the documents")
    download.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User agent for the requests")
    download.add_argument(
        "--max-workers",
        type=int,
        default=tuned_defaults["download_workers"],
        help="Parallel downloads",
    )
    _add_common_arguments(download)

    args = parser.parse_args(argv)
    if getattr(args, "batch_size", 1) < 1:
        parser.error("--batch-size must be at least 1")
    if getattr(args, "max_workers", 1) < 1:
        parser.error("--max-workers must be at least 1")
    return args


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _resolve_tag(args: argparse.Namespace, input_dir: Path) -> str:
    from .utils import default_tag

    if args.tag:
        return args.tag
    tag = default_tag(input_dir)
    log.warning("No tag specified. Using directory name %r as tag.", tag)
    return tag


def _discover(args: argparse.Namespace, input_dir: Path) -> list[Path]:
    from .sources import discover_documents

    if args.sidecar:
        log.info("Loading metadata from JSON sidecar files.")
    else:
        log.info("Scanning documents for CVE and date.")
    files = discover_documents(input_dir, args.pattern, exclude_sidecars=args.sidecar)
    log.info("Total documents discovered: %s", len(files))
    if files:
        log.debug("Sample input files: %s", ", ".join(p.name for p in files[:5]))
    return files


def _run_convert(args: argparse.Namespace, counters: RunCounters) -> None:
    from .extraction import create_extractor
    from .models import RunContext
    from .runner import run_pipeline
    from .sinks import AppendSink
    from .utils import check_input_dir, check_output_file, existing_file_names

    check_input_dir(args.input_dir)
    check_output_file(args.output_file)
    tag = _resolve_tag(args, args.input_dir)

    files = _discover(args, args.input_dir)
    if not files:
        log.warning("No documents found. Exiting.")
        return
    skip = existing_file_names(args.output_file) if args.skip_existing else set()

    extractor = create_extractor(
        args.extractor,
        tika_server=args.tika_server,
        num_threads=args.max_workers,
    )
    with AppendSink(args.output_file) as sink:
        context = RunContext(
            tag=tag,
            extractor=extractor,
            sink=sink,
            use_sidecar=args.sidecar,
            counters=counters,
        )
        run_pipeline(files, context, max_workers=args.max_workers, skip=skip)


def _run_index(args: argparse.Namespace, counters: RunCounters) -> None:
    from .breaker import CircuitBreaker, GuardedSink
    from .extraction import create_extractor
    from .models import RunContext
    from .runner import index_records, run_batched
    from .sinks import IndexedSink, connect, ensure_index, load_records
    from .utils import check_input_dir

    from_jsonl = args.source.is_file()
    if from_jsonl and args.extract_only:
        raise PreconditionError("--extract-only needs a directory of documents, not a JSONL file.")
    if not from_jsonl:
        check_input_dir(args.source)

    sink = None
    if not args.extract_only:
        client = connect(args.es_url, api_key=args.es_api_key)
        ensure_index(client, args.index)
        sink = GuardedSink(IndexedSink(client, args.index), CircuitBreaker(args.batch_size))

    try:
        if from_jsonl:
            log.info("Indexing records from %s", args.source)
            context = RunContext(tag=args.tag or "", sink=sink, counters=counters)
            index_records(load_records(args.source), context, batch_size=args.batch_size)
            return

        tag = _resolve_tag(args, args.source)
        files = _discover(args, args.source)
        if not files:
            log.warning("No documents found. Exiting.")
            return
        extractor = create_extractor(
            args.extractor,
            tika_server=args.tika_server,
            num_threads=args.max_workers,
        )
        context = RunContext(
            tag=tag,
            extractor=extractor,
            sink=sink,
            use_sidecar=args.sidecar,
            counters=counters,
        )
        run_batched(
            files,
            context,
            batch_size=args.batch_size,
            max_workers=args.max_workers,
            extract_only=args.extract_only,
        )
    finally:
        if sink is not None:
            sink.close()


def _run_download(args: argparse.Namespace, counters: RunCounters) -> None:
    from .sources import download_links, load_links, pending_links

    if not args.output_dir.is_dir():
        raise PreconditionError(f"Output directory {args.output_dir} is not a valid path.")
    log.info("Loading links from %s", args.link_file)
    links = load_links(args.link_file)
    log.info("Processing %s links", len(links))
    links = pending_links(links, args.output_dir)
    log.info("Downloading %s documents.", len(links))
    downloaded, failed = download_links(
        links,
        args.output_dir,
        user_agent=args.user_agent,
        max_workers=args.max_workers,
    )
    counters.succeed(downloaded)
    counters.fail(failed)


COMMANDS = {
    "convert": _run_convert,
    "index": _run_index,
    "download": _run_download,
}


def main(argv: list[str] | None = None) -> None:
    """Run one command; exits with status 1 on fatal errors or abort."""
    args = parse_args(argv)
    _setup_logging(
        verbose=args.verbose,
        detailed_logging=args.detailed_logging,
        log_file=args.log_file,
    )

    t0 = time.perf_counter()
    counters = RunCounters()
    status = 0
    try:
        COMMANDS[args.command](args, counters)
    except CircuitBreakerTripped as exc:
        log.error("Run aborted: %s", exc)
        status = 1
    except IngestionError as exc:
        log.error("%s", exc)
        status = 1

    log.info("=" * 60)
    log.info("%s %s", args.command.upper(), "FAILED" if status else "COMPLETE")
    log.info("  Succeeded: %s", counters.succeeded)
    log.info("  Failed:    %s", counters.failed)
    log.info("  Runtime:   %.1fs", time.perf_counter() - t0)
    if status:
        sys.exit(status)
