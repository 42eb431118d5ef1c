"""
Classifier - Decide whether a candidate is worth indexing.

Each candidate goes through cheap stat checks (regular file, empty, too
large) and then a chain of content heuristics that look at the path and a
sample of the leading bytes. The heuristics are approximate filters: a
hand-written file with very long lines can still look minified.
"""

import codecs
import logging
import os
import stat
import threading
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

import xxhash

from .config import IndexerConfig
from .errors import handle_error
from .fingerprint import fingerprint
from .models import (
    CandidatePath,
    ClassificationResult,
    FileRecord,
    FilterAggressiveness,
    RejectReason,
    Rejection,
    ScalingConfig,
)


logger = logging.getLogger(__name__)


LANGUAGES = {
    ".rs": "rust",
    ".ts": "typescript", ".tsx": "typescript",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".py": "python",
    ".go": "go",
    ".java": "java",
    ".c": "c", ".h": "c",
    ".cpp": "cpp", ".hpp": "cpp", ".cc": "cpp", ".cxx": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".clj": "clojure",
    ".ex": "elixir", ".exs": "elixir",
    ".erl": "erlang",
    ".hs": "haskell",
    ".ml": "ocaml",
    ".fs": "fsharp",
    ".vue": "vue",
    ".svelte": "svelte",
    ".html": "html",
    ".css": "css",
    ".scss": "scss", ".sass": "scss",
    ".less": "less",
    ".json": "json",
    ".yaml": "yaml", ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
    ".md": "markdown",
    ".txt": "text",
    ".sh": "shell", ".bash": "shell", ".zsh": "shell", ".fish": "shell",
    ".ps1": "powershell",
    ".sql": "sql",
    ".graphql": "graphql",
    ".proto": "protobuf",
}

NAMED_FILES = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "cmakelists.txt": "cmake",
    "gemfile": "ruby",
    "rakefile": "ruby",
}


def detect_language(path: str) -> Optional[str]:
    """Detect language from file extension or well-known file name."""
    name = path.rsplit("/", 1)[-1].lower()
    if name in NAMED_FILES:
        return NAMED_FILES[name]
    if name.startswith("dockerfile"):
        return "dockerfile"
    _, ext = os.path.splitext(name)
    return LANGUAGES.get(ext)


# ═══════════════════════════════════════════════════════════════════
# Heuristics
# ═══════════════════════════════════════════════════════════════════

class ContentHeuristic:
    """
    One content check.

    Subclasses return the reject reason when the sample looks like
    something that should not be indexed, or None to let it through.
    """

    reason: RejectReason

    def classify(self, path: CandidatePath, sample: bytes) -> Optional[RejectReason]:
        raise NotImplementedError


class BinaryHeuristic(ContentHeuristic):
    """NUL bytes, invalid UTF-8 or too many control characters."""

    reason = RejectReason.BINARY

    BINARY_EXTENSIONS = frozenset({
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff",
        ".pdf", ".zip", ".gz", ".tar", ".rar", ".7z", ".jar", ".war",
        ".exe", ".dll", ".so", ".dylib", ".o", ".a", ".class", ".pyc",
        ".wasm", ".bin", ".dat", ".db", ".sqlite",
        ".ttf", ".otf", ".woff", ".woff2", ".eot",
        ".mp3", ".mp4", ".wav", ".avi", ".mov", ".mkv", ".flac",
    })
    # Bytes that legitimately show up in text files
    _TEXT_CONTROLS = frozenset(b"\t\n\r\f\b\x1b")

    def __init__(self, max_control_ratio: float = 0.3):
        self.max_control_ratio = max_control_ratio

    def classify(self, path: CandidatePath, sample: bytes) -> Optional[RejectReason]:
        _, ext = os.path.splitext(path.lower())
        if ext in self.BINARY_EXTENSIONS:
            return self.reason
        if not sample:
            return None
        if b"\x00" in sample:
            return self.reason
        try:
            # final=False tolerates a multi-byte character cut at the sample edge
            codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
        except UnicodeDecodeError:
            return self.reason
        controls = sum(1 for b in sample if b < 0x20 and b not in self._TEXT_CONTROLS)
        if controls / len(sample) > self.max_control_ratio:
            return self.reason
        return None


class GeneratedHeuristic(ContentHeuristic):
    """Header markers left by code generators."""

    reason = RejectReason.GENERATED

    def __init__(self, markers: Iterable[str], header_lines: int = 10):
        self.markers = tuple(markers)
        self.header_lines = header_lines

    def classify(self, path: CandidatePath, sample: bytes) -> Optional[RejectReason]:
        head = sample.decode("utf-8", errors="ignore").splitlines()[: self.header_lines]
        for line in head:
            if any(marker in line for marker in self.markers):
                return self.reason
        return None


class MinifiedHeuristic(ContentHeuristic):
    """Very long average lines with almost no whitespace."""

    reason = RejectReason.MINIFIED

    def __init__(
        self,
        max_avg_line_length: int = 300,
        min_whitespace_ratio: float = 0.12,
        min_chars: int = 1000,
    ):
        self.max_avg_line_length = max_avg_line_length
        self.min_whitespace_ratio = min_whitespace_ratio
        self.min_chars = min_chars

    def classify(self, path: CandidatePath, sample: bytes) -> Optional[RejectReason]:
        text = sample.decode("utf-8", errors="ignore")
        if len(text) < self.min_chars:
            return None
        lines = text.splitlines() or [text]
        avg_line = len(text) / len(lines)
        whitespace = sum(1 for ch in text if ch.isspace()) / len(text)
        if avg_line > self.max_avg_line_length and whitespace < self.min_whitespace_ratio:
            return self.reason
        return None


class VendorHeuristic(ContentHeuristic):
    """Files living under a third-party directory."""

    reason = RejectReason.VENDORED

    def __init__(self, dir_names: Iterable[str]):
        self.dir_names = frozenset(n.lower() for n in dir_names)

    def classify(self, path: CandidatePath, sample: bytes) -> Optional[RejectReason]:
        parts = path.lower().split("/")[:-1]
        if any(part in self.dir_names for part in parts):
            return self.reason
        return None


_STRONG_MARKERS = ("@generated", "DO NOT EDIT", "Code generated by")
_STANDARD_MARKERS = _STRONG_MARKERS + (
    "auto-generated",
    "Auto-generated",
    "autogenerated",
    "This file was automatically generated",
    "Generated by the protocol buffer compiler",
)
_AGGRESSIVE_MARKERS = _STANDARD_MARKERS + (
    "<auto-generated",
    "This file is generated",
    "Automatically generated by",
    "generated by",
    "Generated by",
)

_CORE_VENDOR_DIRS = ("vendor", "third_party", "third-party", "thirdparty")
_STANDARD_VENDOR_DIRS = _CORE_VENDOR_DIRS + ("vendors", "bower_components", "jspm_packages", "pods")
_AGGRESSIVE_VENDOR_DIRS = _STANDARD_VENDOR_DIRS + ("external", "extern", "deps", "carthage")


def build_heuristics(aggressiveness: FilterAggressiveness) -> List[ContentHeuristic]:
    """The heuristic chain for a filtering level, in evaluation order."""
    if aggressiveness is FilterAggressiveness.PERMISSIVE:
        return [
            BinaryHeuristic(),
            GeneratedHeuristic(_STRONG_MARKERS, header_lines=5),
            MinifiedHeuristic(max_avg_line_length=500, min_whitespace_ratio=0.08),
            VendorHeuristic(_CORE_VENDOR_DIRS),
        ]
    if aggressiveness is FilterAggressiveness.STANDARD:
        return [
            BinaryHeuristic(),
            GeneratedHeuristic(_STANDARD_MARKERS, header_lines=10),
            MinifiedHeuristic(max_avg_line_length=300, min_whitespace_ratio=0.12),
            VendorHeuristic(_STANDARD_VENDOR_DIRS),
        ]
    return [
        BinaryHeuristic(),
        GeneratedHeuristic(_AGGRESSIVE_MARKERS, header_lines=20),
        MinifiedHeuristic(max_avg_line_length=200, min_whitespace_ratio=0.15, min_chars=500),
        VendorHeuristic(_AGGRESSIVE_VENDOR_DIRS),
    ]


# ═══════════════════════════════════════════════════════════════════
# Reading
# ═══════════════════════════════════════════════════════════════════

class BoundedLineReader:
    """
    Lazy line iterator with a hard cap.

    Yields at most ``max_lines`` lines (without line endings). If the file
    has more, iteration stops and ``truncated`` is set. Every raw byte read,
    including the part past the cap, goes into an xxh64 digest that is
    available as ``fingerprint`` once the file was read to the end. The file
    handle is released on exhaustion, early exit or close().

    Usage:
        with BoundedLineReader(path, max_lines=10_000) as reader:
            lines = list(reader)
        if reader.truncated:
            ...
    """

    def __init__(self, path: Path, max_lines: int, sample_size: int = 8192):
        self.path = Path(path)
        self.max_lines = max_lines
        self.truncated = False
        self._hasher = xxhash.xxh64()
        self._complete = False
        self._raw = open(self.path, "rb")
        try:
            self.first_chunk: bytes = self._raw.read(sample_size)
            self._raw.seek(0)
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[str]:
        return self._lines()

    def _lines(self) -> Iterator[str]:
        try:
            count = 0
            for raw_line in self._raw:
                self._hasher.update(raw_line)
                if count >= self.max_lines:
                    self.truncated = True
                    self._drain()
                    break
                count += 1
                yield raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
            self._complete = True
        finally:
            self.close()

    def _drain(self) -> None:
        # Past the cap only the digest needs the bytes
        while chunk := self._raw.read(65536):
            self._hasher.update(chunk)

    @property
    def fingerprint(self) -> Optional[str]:
        """Digest of the whole file, or None if it was not read to the end."""
        return self._hasher.hexdigest() if self._complete else None

    def close(self) -> None:
        if not self._raw.closed:
            self._raw.close()

    def __enter__(self) -> "BoundedLineReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _line_count(content: str) -> int:
    return len(content.split("\n"))


class ContentClassifier:
    """
    Turns candidate paths into FileRecords or Rejections.

    Checks run in a fixed order: not a regular file, empty, too large,
    then the heuristic chain (binary, generated, minified, vendored).
    """

    def __init__(
        self,
        root: Path,
        config: IndexerConfig,
        scaling: ScalingConfig,
        heuristics: Optional[List[ContentHeuristic]] = None,
    ):
        self.root = Path(root)
        self.config = config
        self.scaling = scaling
        self.heuristics = (
            heuristics if heuristics is not None
            else build_heuristics(scaling.filter_aggressiveness)
        )

    def classify(self, candidate: CandidatePath) -> FileRecord | Rejection:
        """Classify one candidate. Never raises for per-file problems."""
        absolute = self.root / candidate

        try:
            st = os.stat(absolute)
        except OSError as e:
            handle_error(e, absolute, "classify")
            return Rejection(candidate, RejectReason.UNREADABLE, str(e))

        if not stat.S_ISREG(st.st_mode):
            return Rejection(candidate, RejectReason.NOT_REGULAR_FILE)
        if st.st_size == 0:
            return Rejection(candidate, RejectReason.EMPTY)
        if st.st_size > self.scaling.max_file_size:
            return Rejection(
                candidate, RejectReason.TOO_LARGE,
                f"{st.st_size} > {self.scaling.max_file_size} bytes",
            )

        try:
            if self.config.stream_large_files and st.st_size > self.config.large_file_threshold:
                sample, content, truncated, digest = self._read_streaming(absolute)
            else:
                sample, content, truncated, digest = self._read_whole(absolute)
        except OSError as e:
            handle_error(e, absolute, "classify")
            return Rejection(candidate, RejectReason.UNREADABLE, str(e))

        for heuristic in self.heuristics:
            verdict = heuristic.classify(candidate, sample)
            if verdict is not None:
                return Rejection(candidate, verdict, type(heuristic).__name__)

        if truncated:
            logger.debug(f"Truncated {candidate} at {self.config.max_stream_lines} lines")

        return FileRecord(
            path=candidate,
            absolute_path=str(absolute),
            content=content,
            size=st.st_size,
            last_modified=st.st_mtime,
            line_count=_line_count(content),
            language=detect_language(candidate),
            truncated=truncated,
            fingerprint=digest,
        )

    def classify_all(
        self,
        candidates: Iterable[CandidatePath],
        cancel_event: Optional[threading.Event] = None,
    ) -> ClassificationResult:
        """
        Classify candidates until ``max_file_count`` files are accepted.

        Candidates left once the limit is hit are counted as dropped, not
        rejected.
        """
        result = ClassificationResult()
        limit = self.scaling.max_file_count
        it = iter(candidates)

        for candidate in it:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Classification cancelled")
                break
            if len(result.accepted) >= limit:
                result.dropped_over_limit = 1 + sum(1 for _ in it)
                logger.warning(
                    f"File limit {limit} reached; dropped {result.dropped_over_limit} candidates"
                )
                break

            outcome = self.classify(candidate)
            if isinstance(outcome, FileRecord):
                result.accepted.append(outcome)
            else:
                logger.debug(f"Filtered {outcome.path}: {outcome.reason.value}")
                result.rejected.append(outcome)

        logger.info(
            f"Classified {len(result.accepted) + len(result.rejected)} candidates: "
            f"{len(result.accepted)} accepted, {len(result.rejected)} filtered"
        )
        return result

    def read_file(self, path: str | Path) -> Optional[FileRecord]:
        """
        Read one file on demand, bypassing the filters.

        Only the binary check applies. Returns None for anything that is
        not a readable regular text file.
        """
        absolute = Path(path)
        if not absolute.is_absolute():
            absolute = self.root / absolute
        try:
            rel = absolute.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            rel = absolute.as_posix()

        try:
            st = os.stat(absolute)
            if not stat.S_ISREG(st.st_mode):
                return None
            sample, content, truncated, digest = self._read_whole(absolute)
        except OSError as e:
            handle_error(e, absolute, "read_file")
            return None

        if BinaryHeuristic().classify(rel, sample) is not None:
            return None

        return FileRecord(
            path=rel,
            absolute_path=str(absolute),
            content=content,
            size=st.st_size,
            last_modified=st.st_mtime,
            line_count=_line_count(content),
            language=detect_language(rel),
            truncated=truncated,
            fingerprint=digest,
        )

    def _read_whole(self, absolute: Path) -> Tuple[bytes, str, bool, str]:
        data = absolute.read_bytes()
        sample = data[: self.config.binary_sample_size]
        return sample, data.decode("utf-8", errors="replace"), False, fingerprint(data)

    def _read_streaming(self, absolute: Path) -> Tuple[bytes, str, bool, Optional[str]]:
        reader = BoundedLineReader(
            absolute, self.config.max_stream_lines, self.config.binary_sample_size
        )
        with reader:
            # Binary files are rejected on the first chunk, no need to read on
            if BinaryHeuristic().classify(absolute.name, reader.first_chunk) is not None:
                return reader.first_chunk, "", False, None
            lines = list(reader)
        return reader.first_chunk, "\n".join(lines), reader.truncated, reader.fingerprint
