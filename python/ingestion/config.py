"""
Ingestion Configuration - Settings for one indexing run.

Uses environment variables with sensible defaults. A config value is built
once per run and passed explicitly to every component; nothing here is
looked up globally.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _env_truthy(val: str | None, default: bool) -> bool:
    """Check if an environment value is truthy."""
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class IndexerConfig:
    """
    Configuration for the ingestion pipeline.

    Size limits left as None are taken from the scaling policy for the
    detected codebase size class. Setting them pins the value regardless
    of codebase size.
    """

    # --- Tool identity ---
    tool_name: str = "searchgrep"
    ignore_file_name: str = ".searchgrepignore"
    metadata_dir_name: str = ".searchgrep"

    # --- Sink ---
    data_dir: Path = field(default_factory=lambda: Path.home() / ".searchgrep" / "stores")
    default_store_name: str = "searchgrep"

    # --- Ignore rules ---
    use_default_ignores: bool = True
    extra_ignore_patterns: List[str] = field(default_factory=list)

    # --- Limits (None = use scaling policy) ---
    max_file_size: Optional[int] = None
    max_file_count: Optional[int] = None
    batch_size: Optional[int] = None

    # --- Concurrency ---
    upload_concurrency: int = 1     # Parallel sink uploads within a batch

    # --- Large files ---
    stream_large_files: bool = False
    large_file_threshold: int = 50 * 1024   # 50KB
    max_stream_lines: int = 10_000
    binary_sample_size: int = 8 * 1024      # Bytes sniffed for binary detection

    # --- Version control ---
    use_git: bool = True
    git_timeout: float = 30.0

    def __post_init__(self):
        """Ensure paths are absolute and limits are sane."""
        self.data_dir = Path(self.data_dir).expanduser().resolve()
        self.extra_ignore_patterns = list(self.extra_ignore_patterns)
        if self.upload_concurrency < 1:
            raise ValueError("upload_concurrency must be >= 1")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_stream_lines < 1:
            raise ValueError("max_stream_lines must be >= 1")

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            SEARCHGREP_DATA_DIR: Directory holding store databases
            SEARCHGREP_EXCLUDES: Comma-separated extra ignore patterns
            SEARCHGREP_MAX_FILE_SIZE: Per-file size limit in bytes
            SEARCHGREP_MAX_FILE_COUNT: Maximum accepted files
            SEARCHGREP_BATCH_SIZE: Files per upload batch
            SEARCHGREP_UPLOAD_CONCURRENCY: Parallel uploads within a batch
            SEARCHGREP_STREAM_LARGE_FILES: Read large files line by line
            SEARCHGREP_NO_GIT: Skip the git fast path
        """
        config = cls()

        if data_dir := os.environ.get("SEARCHGREP_DATA_DIR"):
            config.data_dir = Path(data_dir)

        if excludes := os.environ.get("SEARCHGREP_EXCLUDES"):
            config.extra_ignore_patterns = [p.strip() for p in excludes.split(",") if p.strip()]

        if max_size := os.environ.get("SEARCHGREP_MAX_FILE_SIZE"):
            config.max_file_size = int(max_size)

        if max_count := os.environ.get("SEARCHGREP_MAX_FILE_COUNT"):
            config.max_file_count = int(max_count)

        if batch := os.environ.get("SEARCHGREP_BATCH_SIZE"):
            config.batch_size = int(batch)

        if concurrency := os.environ.get("SEARCHGREP_UPLOAD_CONCURRENCY"):
            config.upload_concurrency = int(concurrency)

        config.stream_large_files = _env_truthy(
            os.environ.get("SEARCHGREP_STREAM_LARGE_FILES"), config.stream_large_files
        )
        config.use_git = not _env_truthy(os.environ.get("SEARCHGREP_NO_GIT"), False)

        config.__post_init__()
        return config

    def store_path(self, store_name: Optional[str] = None) -> Path:
        """Database path for a named store."""
        return self.data_dir / f"{store_name or self.default_store_name}.db"
