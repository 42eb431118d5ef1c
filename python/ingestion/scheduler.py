"""
Scheduler - Batch formation and upload driving.

Splits the files to index into bounded batches and pushes them through the
sink one batch at a time. Uploads within a batch run on a thread pool
bounded by a semaphore; counters and progress are only touched on the
event-loop thread. A failed upload is logged and counted, never fatal.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Set, Tuple

from .errors import ProcessingResult, UploadError, handle_error
from .fingerprint import fingerprint
from .models import Batch, FileRecord, ProgressSnapshot, RunResult


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


def schedule(files: Sequence[FileRecord], batch_size: int) -> List[Batch]:
    """
    Split files into ordered batches of at most ``batch_size``.

    Every file lands in exactly one batch; only the last batch may be short.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        Batch(index=n, files=tuple(files[i:i + batch_size]))
        for n, i in enumerate(range(0, len(files), batch_size))
    ]


class ProgressTracker:
    """Counts processed files and estimates time remaining from throughput."""

    def __init__(self, total: int, clock: Callable[[], float] = time.monotonic):
        self.total = total
        self.indexed = 0
        self.failed = 0
        self._clock = clock
        self._started = clock()

    def record(self, success: bool) -> None:
        if success:
            self.indexed += 1
        else:
            self.failed += 1

    @property
    def processed(self) -> int:
        return self.indexed + self.failed

    def snapshot(self) -> ProgressSnapshot:
        elapsed = self._clock() - self._started
        processed = self.processed
        percent = 100.0 if self.total == 0 else processed / self.total * 100
        eta: Optional[float] = None
        if processed > 0:
            eta = elapsed / processed * max(self.total - processed, 0)
        return ProgressSnapshot(
            indexed=self.indexed,
            failed=self.failed,
            total=self.total,
            percent_complete=percent,
            elapsed_seconds=elapsed,
            estimated_seconds_remaining=eta,
        )


class BatchScheduler:
    """
    Drives batches through a sink.

    Usage:
        scheduler = BatchScheduler(concurrency=4, on_progress=print)
        try:
            result = await scheduler.run(schedule(files, 25), sink)
        finally:
            scheduler.close()
    """

    def __init__(
        self,
        concurrency: int = 1,
        progress_interval: int = 1,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        fingerprint_of: Optional[Callable[[FileRecord], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.concurrency = max(1, concurrency)
        self.progress_interval = max(1, progress_interval)
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.fingerprint_of = fingerprint_of or (
            lambda r: r.fingerprint or fingerprint(r.content_bytes)
        )
        self._clock = clock
        self._executor: ThreadPoolExecutor | None = None
        self._tracker: Optional[ProgressTracker] = None
        self._last_reported = -1

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.concurrency,
                thread_name_prefix="uploader"
            )
        return self._executor

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def run(self, batches: Sequence[Batch], sink) -> RunResult:
        """Upload every file of every batch, in batch order."""
        seen: Set[str] = set()
        work: List[Tuple[Batch, List[FileRecord]]] = []
        for batch in batches:
            pending: List[FileRecord] = []
            for record in batch.files:
                if record.path in seen:
                    logger.warning(f"Skipping duplicate upload of {record.path}")
                    continue
                seen.add(record.path)
                pending.append(record)
            work.append((batch, pending))

        total = len(seen)
        tracker = ProgressTracker(total, self._clock)
        self._tracker = tracker
        self._last_reported = -1
        result = RunResult()
        semaphore = asyncio.Semaphore(self.concurrency)
        start = self._clock()

        for batch, pending in work:
            if self._cancelled():
                result.cancelled = True
                break

            logger.debug(f"Batch {batch.index + 1}/{len(batches)}: {len(pending)} files")

            outcomes = await asyncio.gather(
                *(self._upload_one(record, sink, semaphore) for record in pending)
            )

            for outcome in outcomes:
                if outcome is None:
                    result.cancelled = True
                elif outcome.success:
                    result.indexed_count += 1
                else:
                    result.error_count += 1
                    result.failures.append(outcome.path)

            self._report(force=True)

            if result.cancelled:
                break

        result.elapsed = self._clock() - start
        if result.cancelled:
            logger.info(f"Upload cancelled after {result.indexed_count} of {total} files")
        else:
            logger.info(
                f"Uploaded {result.indexed_count} files, {result.error_count} failed "
                f"in {result.elapsed:.1f}s"
            )
        return result

    async def _upload_one(
        self,
        record: FileRecord,
        sink,
        semaphore: asyncio.Semaphore,
    ) -> Optional[ProcessingResult]:
        """Upload one file. Returns None when skipped due to cancellation."""
        async with semaphore:
            if self._cancelled():
                return None

            loop = asyncio.get_running_loop()
            try:
                ok = await loop.run_in_executor(
                    self._get_executor(), self._upload_sync, sink, record
                )
                if not ok:
                    raise UploadError(record.path)
                outcome = ProcessingResult.ok(record.path)
            except Exception as e:
                # Every sink failure is per file; the run carries on
                action = handle_error(e, record.path, "upload")
                outcome = ProcessingResult.failed(record.path, e, action)

            # Back on the event-loop thread
            self._tracker.record(outcome.success)
            self._report()
            return outcome

    def _upload_sync(self, sink, record: FileRecord) -> bool:
        """Synchronous upload (runs in thread pool)."""
        return sink.upload_file(
            record.path,
            record.content,
            self.fingerprint_of(record),
            record.size,
            record.last_modified,
        )

    def _report(self, force: bool = False) -> None:
        tracker = self._tracker
        if self.on_progress is None or tracker is None:
            return
        processed = tracker.processed
        if processed == self._last_reported:
            return
        if force or processed % self.progress_interval == 0:
            self._last_reported = processed
            self.on_progress(tracker.snapshot())

    def snapshot(self) -> Optional[ProgressSnapshot]:
        """Progress of the current or last run."""
        return self._tracker.snapshot() if self._tracker else None

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
