"""Exception types raised by the ingestion pipeline."""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Per-file failures (absorbed at the worker boundary)
# ---------------------------------------------------------------------------


class ExtractionError(IngestionError):
    """The document extractor could not produce text for a file."""


class MissingMetadataError(IngestionError):
    """A document has no readable metadata sidecar."""


# ---------------------------------------------------------------------------
# Fatal failures (abort the whole run)
# ---------------------------------------------------------------------------


class PreconditionError(IngestionError):
    """An input or output location is unusable; nothing was processed."""


class SearchUnavailableError(IngestionError):
    """The search engine did not answer the connectivity check."""


class IndexBootstrapError(IngestionError):
    """The target index is missing and could not be created."""


class CircuitBreakerTripped(IngestionError):
    """Cumulative delivery failures crossed the abort threshold."""

    def __init__(self, uploaded: int, failed: int, batch: tuple[int, int] = (0, 0)) -> None:
        self.uploaded = uploaded
        self.failed = failed
        # outcome of the batch that tripped the breaker
        self.batch = batch
        super().__init__(
            f"Too many delivery failures: {failed} failed, {uploaded} uploaded"
        )
