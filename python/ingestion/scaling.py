"""
Scaling - Codebase metrics and the size-class policy.

Measures a file population, buckets it into a SizeClass and maps the class
to the pipeline parameters (batch size, limits, filtering level, progress
cadence). Larger codebases get bigger batches, tighter limits and more
aggressive filtering.
"""

import logging
import os
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .classifier import detect_language
from .config import IndexerConfig
from .models import (
    CodebaseMetrics,
    FileRecord,
    FilterAggressiveness,
    ScalingConfig,
    SizeClass,
)


logger = logging.getLogger(__name__)

KB = 1024
MB = 1024 * 1024

# (upper bound on files, upper bound on bytes), both exclusive
SIZE_THRESHOLDS: List[Tuple[SizeClass, int, int]] = [
    (SizeClass.SMALL, 100, 5 * MB),
    (SizeClass.MEDIUM, 1_000, 50 * MB),
    (SizeClass.LARGE, 10_000, 500 * MB),
]

SCALING_TABLE: Dict[SizeClass, ScalingConfig] = {
    SizeClass.SMALL: ScalingConfig(
        batch_size=10,
        max_file_size=1 * MB,
        max_file_count=10_000,
        filter_aggressiveness=FilterAggressiveness.PERMISSIVE,
        progress_interval_files=1,
    ),
    SizeClass.MEDIUM: ScalingConfig(
        batch_size=25,
        max_file_size=1 * MB,
        max_file_count=25_000,
        filter_aggressiveness=FilterAggressiveness.STANDARD,
        progress_interval_files=10,
    ),
    SizeClass.LARGE: ScalingConfig(
        batch_size=50,
        max_file_size=512 * KB,
        max_file_count=50_000,
        filter_aggressiveness=FilterAggressiveness.STANDARD,
        progress_interval_files=100,
    ),
    SizeClass.HUGE: ScalingConfig(
        batch_size=100,
        max_file_size=256 * KB,
        max_file_count=100_000,
        filter_aggressiveness=FilterAggressiveness.AGGRESSIVE,
        progress_interval_files=500,
    ),
}

SIZE_BUCKETS: List[Tuple[str, float]] = [
    ("<1KB", 1 * KB),
    ("1-10KB", 10 * KB),
    ("10-100KB", 100 * KB),
    ("100KB-1MB", 1 * MB),
    (">=1MB", float("inf")),
]

Measurable = Union[FileRecord, Tuple[str, int]]


def _path_and_size(item: Measurable) -> Tuple[str, int]:
    if isinstance(item, FileRecord):
        return item.path, item.size
    path, size = item
    return path, int(size)


def _extension(path: str) -> str:
    _, ext = os.path.splitext(path.rsplit("/", 1)[-1])
    return ext.lower()


def analyze(candidates: Iterable[Measurable]) -> CodebaseMetrics:
    """
    Summarize a file population.

    Accepts FileRecords or (path, size) pairs from a stat-only survey.
    """
    paths: List[str] = []
    sizes: List[int] = []
    for item in candidates:
        path, size = _path_and_size(item)
        paths.append(path)
        sizes.append(size)

    extension_counts = Counter(_extension(p) or "<none>" for p in paths)
    language_counts = Counter(
        lang for lang in (detect_language(p) for p in paths) if lang is not None
    )

    return CodebaseMetrics(
        total_files=len(paths),
        total_size=int(sum(sizes)),
        size_distribution=_distribution(sizes),
        extension_counts=dict(extension_counts.most_common()),
        language_counts=dict(language_counts.most_common()),
    )


def _distribution(sizes: Sequence[int]) -> Dict[str, float]:
    labels = [label for label, _ in SIZE_BUCKETS]
    if not sizes:
        empty = {k: 0.0 for k in ("min", "max", "mean", "p50", "p90", "p99")}
        empty.update({label: 0.0 for label in labels})
        return empty

    arr = np.asarray(sizes, dtype=np.float64)
    p50, p90, p99 = np.percentile(arr, [50, 90, 99])
    distribution = {
        "min": float(arr.min()),
        "max": float(arr.max()),
        "mean": float(arr.mean()),
        "p50": float(p50),
        "p90": float(p90),
        "p99": float(p99),
    }

    uppers = np.asarray([upper for _, upper in SIZE_BUCKETS[:-1]], dtype=np.float64)
    counts = np.bincount(np.searchsorted(uppers, arr, side="right"), minlength=len(labels))
    distribution.update({label: float(n) for label, n in zip(labels, counts)})
    return distribution


def classify_size(metrics: CodebaseMetrics) -> SizeClass:
    """
    Bucket a codebase by file count and total bytes.

    The class is the larger of the two per-dimension classes, so adding
    files or bytes can never move a codebase to a smaller class.
    """
    by_count = SizeClass.HUGE
    by_bytes = SizeClass.HUGE
    for size_class, max_files, max_bytes in reversed(SIZE_THRESHOLDS):
        if metrics.total_files < max_files:
            by_count = size_class
        if metrics.total_size < max_bytes:
            by_bytes = size_class
    return max(by_count, by_bytes)


def scaling_for(
    size_class: SizeClass,
    config: Optional[IndexerConfig] = None,
) -> ScalingConfig:
    """Pipeline parameters for a size class, with any config overrides applied."""
    base = SCALING_TABLE[size_class]
    if config is None:
        return base
    return ScalingConfig(
        batch_size=config.batch_size or base.batch_size,
        max_file_size=config.max_file_size or base.max_file_size,
        max_file_count=config.max_file_count or base.max_file_count,
        filter_aggressiveness=base.filter_aggressiveness,
        progress_interval_files=base.progress_interval_files,
    )


def format_bytes(size: float) -> str:
    for unit, scale in (("GB", 1024 * MB), ("MB", MB), ("KB", KB)):
        if size >= scale:
            return f"{size / scale:.1f} {unit}"
    return f"{int(size)} B"


def describe(size_class: SizeClass, metrics: CodebaseMetrics) -> str:
    """Human-readable summary, e.g. "Medium codebase: 3,482 files, 18.4 MB"."""
    return (
        f"{size_class.value.capitalize()} codebase: "
        f"{metrics.total_files:,} files, {format_bytes(metrics.total_size)}"
    )


# Lower rank is uploaded first
_DOC_EXTENSIONS = frozenset({".md", ".rst", ".txt", ".adoc"})
_CONFIG_LANGUAGES = frozenset({
    "json", "yaml", "toml", "xml", "html", "css", "scss", "less",
    "dockerfile", "makefile", "cmake",
})


def category_rank(path: str) -> int:
    """0 source, 1 docs, 2 config and markup, 3 everything else."""
    language = detect_language(path)
    if _extension(path) in _DOC_EXTENSIONS:
        return 1
    if language is None:
        return 3
    if language in _CONFIG_LANGUAGES:
        return 2
    return 0


def prioritize(files: Iterable[FileRecord]) -> List[FileRecord]:
    """Order files so early batches carry the most search-relevant content."""
    return sorted(files, key=lambda f: (category_rank(f.path), f.path.count("/"), f.path))
