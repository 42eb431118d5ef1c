"""
Orchestrator - Main entry point for the ingestion pipeline.

Runs one indexing pass over a codebase root in six phases:
- Phase 1: Validate the root and open the sink
- Phase 2: Enumerate candidates (git listing or traversal) through the ignore rules
- Phase 3: Size survey, then classify candidates with the matching filter level
- Phase 4: Measure the survivors and pick the final scaling parameters
- Phase 5: Skip files whose fingerprint the sink already holds
- Phase 6: Upload the rest in ordered batches
"""

import asyncio
import logging
import os
import stat
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from .classifier import ContentClassifier
from .config import IndexerConfig
from .enumerator import FileEnumerator
from .errors import RootPathError, SinkError, configure_logging, handle_error
from .fingerprint import ChangeDetector
from .ignore import IgnoreEngine
from .models import CandidatePath, IndexReport
from .scaling import analyze, classify_size, describe, prioritize, scaling_for
from .scheduler import BatchScheduler, ProgressCallback, schedule
from .store import Sink, open_store


logger = logging.getLogger(__name__)


def validate_root(root: Path | str) -> Path:
    """
    Resolve the indexing root and make sure it can be read.

    Raises:
        RootPathError: If the root is missing, not a directory, or unreadable
    """
    path = Path(root).expanduser()
    if not path.exists():
        raise RootPathError(path, "path does not exist")
    path = path.resolve()
    if not path.is_dir():
        raise RootPathError(path, "not a directory")
    try:
        with os.scandir(path):
            pass
    except OSError as e:
        raise RootPathError(path, f"cannot read directory ({e.strerror or e})") from e
    return path


class Orchestrator:
    """
    Main orchestrator for the ingestion pipeline.

    Enumerator → Classifier → Scaling → ChangeDetector → Scheduler → Sink

    Each stage narrows the set of files handed to the next, so the sink
    only sees eligible files whose content changed.
    """

    def __init__(self, config: Optional[IndexerConfig] = None, sink: Optional[Sink] = None):
        self.config = config or IndexerConfig()
        self.sink = sink

    async def run(
        self,
        root: Path | str,
        store_name: Optional[str] = None,
        force: bool = False,
        verbose: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> IndexReport:
        """
        Index one codebase into the sink.

        Args:
            root: Codebase root directory
            store_name: Store to open when no sink was given
            force: Re-upload every eligible file, ignoring fingerprints
            verbose: Log at DEBUG level
            on_progress: Called with a ProgressSnapshot while uploading
            cancel_event: Set to stop between files

        Returns:
            Report of what was found, filtered, skipped and uploaded

        Raises:
            RootPathError: If the root cannot be indexed
            SinkInitError: If the sink cannot be opened
        """
        if verbose:
            configure_logging(verbose=True)

        start_time = time.monotonic()
        store_name = store_name or self.config.default_store_name

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 1: VALIDATE (root path, sink)
        # ═══════════════════════════════════════════════════════════════════
        logger.info("Phase 1/6: Validating root and opening store...")
        try:
            root_path = validate_root(root)
        except RootPathError as e:
            handle_error(e, root, "validate")
            raise

        sink = self.sink
        owns_sink = sink is None
        if owns_sink:
            try:
                sink = open_store(store_name, self.config)
            except SinkError as e:
                handle_error(e, self.config.store_path(store_name), "open_store")
                raise

        report = IndexReport(root=str(root_path), store_name=store_name)
        try:
            await self._run_phases(
                root_path, sink, report, force, on_progress, cancel_event
            )
            report.store_info = sink.get_info()
        finally:
            if owns_sink:
                sink.close()

        report.elapsed_seconds = time.monotonic() - start_time
        logger.info(f"Indexing complete: {report}")
        return report

    async def _run_phases(
        self,
        root: Path,
        sink: Sink,
        report: IndexReport,
        force: bool,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> None:
        def cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info("Indexing cancelled")
                return True
            return False

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 2: ENUMERATE (git listing or traversal, ignore rules)
        # ═══════════════════════════════════════════════════════════════════
        phase_start = time.monotonic()
        logger.info("Phase 2/6: Enumerating candidate files...")

        ignore = IgnoreEngine.build(root, self.config)
        enumerator = FileEnumerator(root, self.config, ignore, cancel_event)
        candidates = list(enumerator)
        report.candidates = len(candidates)

        phase_time = time.monotonic() - phase_start
        logger.info(
            f"Phase 2 complete: {len(candidates)} candidates via {enumerator.source} "
            f"in {phase_time:.1f}s"
        )
        if cancelled():
            return

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 3: CLASSIFY (stat survey → provisional class → filters)
        # ═══════════════════════════════════════════════════════════════════
        phase_start = time.monotonic()
        logger.info("Phase 3/6: Classifying candidates...")

        survey = self._survey(root, candidates)
        provisional_class = classify_size(analyze(survey))
        provisional = scaling_for(provisional_class, self.config)
        logger.debug(
            f"Provisional size class {provisional_class.value}: "
            f"{provisional.filter_aggressiveness.value} filtering, "
            f"max {provisional.max_file_size} bytes per file"
        )

        classifier = ContentClassifier(root, self.config, provisional)
        classification = classifier.classify_all(candidates, cancel_event)
        report.filtered = len(classification.rejected)
        report.filtered_by_reason = {
            reason.value: count
            for reason, count in classification.rejected_by_reason().items()
        }
        report.dropped = classification.dropped_over_limit

        phase_time = time.monotonic() - phase_start
        logger.info(
            f"Phase 3 complete: {len(classification.accepted)} accepted, "
            f"{report.filtered} filtered, {report.dropped} dropped in {phase_time:.1f}s"
        )
        if cancelled():
            return

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 4: MEASURE (final size class and scaling)
        # ═══════════════════════════════════════════════════════════════════
        logger.info("Phase 4/6: Measuring codebase...")

        metrics = analyze(classification.accepted)
        size_class = classify_size(metrics)
        scaling = scaling_for(size_class, self.config)
        report.metrics = metrics
        report.size_class = size_class
        report.summary = describe(size_class, metrics)
        files = prioritize(classification.accepted)

        logger.info(f"Phase 4 complete: {report.summary}")

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 5: DETECT CHANGES (fingerprints vs. sink)
        # ═══════════════════════════════════════════════════════════════════
        logger.info("Phase 5/6: Detecting changes...")

        if force:
            detector = ChangeDetector(force=True)
        else:
            try:
                existing = sink.list_files()
            except Exception as e:
                raise SinkError(f"Cannot list stored files: {e}") from e
            detector = ChangeDetector(existing)
        to_index, unchanged = detector.partition(files)
        report.skipped_unchanged = len(unchanged)

        logger.info(
            f"Phase 5 complete: {len(to_index)} to upload, {len(unchanged)} unchanged"
        )

        # ═══════════════════════════════════════════════════════════════════
        # PHASE 6: UPLOAD (ordered batches)
        # ═══════════════════════════════════════════════════════════════════
        if not to_index:
            logger.info("Phase 6/6: Skipped (nothing to upload)")
            return

        logger.info(
            f"Phase 6/6: Uploading {len(to_index)} files "
            f"in batches of {scaling.batch_size}..."
        )
        batches = schedule(to_index, scaling.batch_size)
        scheduler = BatchScheduler(
            concurrency=self.config.upload_concurrency,
            progress_interval=scaling.progress_interval_files,
            on_progress=on_progress,
            cancel_event=cancel_event,
            fingerprint_of=detector.fingerprint_of,
        )
        try:
            result = await scheduler.run(batches, sink)
        finally:
            scheduler.close()

        report.indexed = result.indexed_count
        report.errors = result.error_count
        report.cancelled = report.cancelled or result.cancelled

    def _survey(self, root: Path, candidates: List[CandidatePath]) -> List[Tuple[str, int]]:
        """Stat-only (path, size) pairs for regular files."""
        survey: List[Tuple[str, int]] = []
        for candidate in candidates:
            try:
                st = os.stat(root / candidate)
            except OSError:
                # Reported once by the classifier
                continue
            if stat.S_ISREG(st.st_mode):
                survey.append((candidate, st.st_size))
        return survey


async def run_index(
    root: Path | str,
    store_name: Optional[str] = None,
    config: Optional[IndexerConfig] = None,
    sink: Optional[Sink] = None,
    force: bool = False,
    verbose: bool = False,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IndexReport:
    """
    Convenience function to index a codebase.

    Usage:
        report = await run_index(Path("."), store_name="myproject")
        print(report.summary)
    """
    orchestrator = Orchestrator(config, sink)
    return await orchestrator.run(
        root,
        store_name=store_name,
        force=force,
        verbose=verbose,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )


def index_codebase(
    root: Path | str,
    store_name: Optional[str] = None,
    config: Optional[IndexerConfig] = None,
    sink: Optional[Sink] = None,
    force: bool = False,
    verbose: bool = False,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IndexReport:
    """Synchronous wrapper around run_index() for callers without an event loop."""
    return asyncio.run(
        run_index(
            root,
            store_name=store_name,
            config=config,
            sink=sink,
            force=force,
            verbose=verbose,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
    )
