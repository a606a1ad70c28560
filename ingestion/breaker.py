"""Failure-rate policy for batched delivery."""

from __future__ import annotations

import logging

from .errors import CircuitBreakerTripped
from .models import Record
from .sinks import Sink
from .utils import (
    ABORT_FAILURE_RATIO,
    ABORT_MIN_FAILURES,
    BATCH_WARNING_RATIO,
    DEFAULT_BATCH_SIZE,
)

log = logging.getLogger(__name__)


class CircuitBreaker:
    """Warn on bad batches, abort once failures dominate the run.

    Only the delivery loop calls :meth:`record`, so the running totals are
    not locked.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        self.batch_size = batch_size
        self.uploaded = 0
        self.failed = 0

    def record(self, uploaded: int, failed: int) -> None:
        """Account for one batch; raises :class:`CircuitBreakerTripped`."""
        self.uploaded += uploaded
        self.failed += failed

        if failed > BATCH_WARNING_RATIO * self.batch_size:
            log.warning(
                "Batch had %s failures out of %s (batch size %s)",
                failed,
                uploaded + failed,
                self.batch_size,
            )

        if self.should_abort():
            log.critical(
                "Aborting: %s failed vs %s uploaded exceeds the failure threshold",
                self.failed,
                self.uploaded,
            )
            raise CircuitBreakerTripped(self.uploaded, self.failed, (uploaded, failed))

    def should_abort(self) -> bool:
        attempted = self.uploaded + self.failed
        return (
            self.failed > ABORT_MIN_FAILURES
            and self.failed > ABORT_FAILURE_RATIO * attempted
        )


class GuardedSink:
    """Run every delivery of *sink* through a :class:`CircuitBreaker`."""

    def __init__(self, sink: Sink, breaker: CircuitBreaker):
        self.sink = sink
        self.breaker = breaker

    def deliver(self, records: list[Record]) -> tuple[int, int]:
        uploaded, failed = self.sink.deliver(records)
        self.breaker.record(uploaded, failed)
        return uploaded, failed

    def close(self) -> None:
        self.sink.close()
