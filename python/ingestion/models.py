"""
Data Models - Type definitions for the ingestion pipeline.

These dataclasses represent the data flowing through the pipeline stages,
ensuring clear interfaces between modules.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


# Path relative to the indexing root, always "/"-separated.
CandidatePath = str


class RejectReason(Enum):
    """Why the classifier refused a candidate."""
    NOT_REGULAR_FILE = "not_regular_file"
    EMPTY = "empty"
    TOO_LARGE = "too_large"
    BINARY = "binary"
    GENERATED = "generated"
    MINIFIED = "minified"
    VENDORED = "vendored"
    UNREADABLE = "unreadable"


class _OrderedEnum(Enum):
    """Enum whose members compare by declaration order."""

    def _rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._rank() < other._rank()

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._rank() <= other._rank()

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._rank() > other._rank()

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._rank() >= other._rank()


class SizeClass(_OrderedEnum):
    """Codebase scale, smallest first."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"


class FilterAggressiveness(_OrderedEnum):
    """How eagerly generated/minified/vendored content is excluded."""
    PERMISSIVE = "permissive"
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class FileRecord:
    """
    A candidate that survived filtering.

    Immutable for the rest of the run; owned by the pipeline until it is
    handed to the sink.
    """
    path: CandidatePath
    absolute_path: str
    content: str
    size: int                  # Size on disk in bytes
    last_modified: float       # Epoch seconds
    line_count: int
    language: Optional[str] = None
    truncated: bool = False    # Content cut at the streaming line cap
    fingerprint: Optional[str] = None  # xxh64 of the raw bytes on disk

    @property
    def content_bytes(self) -> bytes:
        return self.content.encode("utf-8")

    @property
    def extension(self) -> str:
        name = self.path.rsplit("/", 1)[-1]
        if "." not in name.lstrip("."):
            return ""
        return "." + name.rsplit(".", 1)[-1].lower()


@dataclass(frozen=True)
class Rejection:
    """A candidate refused by the classifier."""
    path: CandidatePath
    reason: RejectReason
    detail: str = ""


@dataclass
class ClassificationResult:
    """Outcome of classifying a candidate set."""
    accepted: List[FileRecord] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)
    dropped_over_limit: int = 0    # Candidates left over after max_file_count

    def rejected_by_reason(self) -> Dict[RejectReason, int]:
        return dict(Counter(r.reason for r in self.rejected))


@dataclass(frozen=True)
class CodebaseMetrics:
    """Summary of a file population. Pure value, no identity."""
    total_files: int
    total_size: int
    size_distribution: Dict[str, float]
    extension_counts: Dict[str, int]
    language_counts: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ScalingConfig:
    """Pipeline parameters for one size class. Never mutated."""
    batch_size: int
    max_file_size: int
    max_file_count: int
    filter_aggressiveness: FilterAggressiveness
    progress_interval_files: int


@dataclass(frozen=True)
class IndexRecord:
    """What the sink remembers about a previously indexed file."""
    path: CandidatePath
    fingerprint: str


@dataclass(frozen=True)
class StoreInfo:
    """Headline numbers reported by the sink."""
    file_count: int
    total_size: int
    last_updated: Optional[float]


@dataclass(frozen=True)
class Batch:
    """An ordered, bounded group of files uploaded together."""
    index: int
    files: Tuple[FileRecord, ...]

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Upload progress at a point in time."""
    indexed: int
    failed: int
    total: int
    percent_complete: float
    elapsed_seconds: float
    estimated_seconds_remaining: Optional[float]

    @property
    def processed(self) -> int:
        return self.indexed + self.failed


@dataclass
class RunResult:
    """Outcome of driving batches through the sink."""
    indexed_count: int = 0
    error_count: int = 0
    elapsed: float = 0.0
    cancelled: bool = False
    failures: List[CandidatePath] = field(default_factory=list)


@dataclass
class IndexReport:
    """Final report of one pipeline run."""
    root: str
    store_name: str
    summary: str = ""
    size_class: Optional[SizeClass] = None
    metrics: Optional[CodebaseMetrics] = None
    candidates: int = 0
    filtered: int = 0              # Rejected by design (binary, empty, ...)
    filtered_by_reason: Dict[str, int] = field(default_factory=dict)
    dropped: int = 0               # Over max_file_count
    skipped_unchanged: int = 0
    indexed: int = 0
    errors: int = 0                # Unexpected upload failures
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    store_info: Optional[StoreInfo] = None

    def __str__(self) -> str:
        text = (
            f"Indexed {self.indexed} files "
            f"({self.skipped_unchanged} unchanged, "
            f"{self.filtered} filtered, "
            f"{self.errors} errors) "
            f"in {self.elapsed_seconds:.1f}s"
        )
        if self.cancelled:
            text += " [cancelled]"
        return text
