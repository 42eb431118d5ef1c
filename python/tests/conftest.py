"""
Test Configuration - Shared fixtures for ingestion tests.

Uses pytest fixtures to create isolated test environments.
"""

import shutil
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest

from ingestion.config import IndexerConfig
from ingestion.models import IndexRecord, StoreInfo


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="ingestion_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def repo(temp_dir: Path) -> Path:
    """Empty codebase root, separate from where stores live."""
    root = temp_dir / "repo"
    root.mkdir()
    return root


@pytest.fixture
def test_config(temp_dir: Path) -> IndexerConfig:
    """Create an isolated test configuration (no git, stores in temp_dir)."""
    return IndexerConfig(
        data_dir=temp_dir / "stores",
        use_git=False,
    )


def write(root: Path, rel: str, content: str | bytes) -> Path:
    """Write a file under root, creating parent directories."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)
    return path


@pytest.fixture
def sample_repo(repo: Path) -> Dict[str, Path]:
    """A small codebase with a mix of eligible and ineligible files."""
    files = {
        "main": write(repo, "src/main.py", 'def main():\n    print("hello")\n'),
        "util": write(repo, "src/lib/util.ts", "export const add = (a: number, b: number) => a + b;\n"),
        "readme": write(repo, "README.md", "# Sample\n\nA sample project.\n"),
        "config": write(repo, "config.json", '{\n  "name": "sample"\n}\n'),
        "empty": write(repo, "empty.txt", ""),
        "hidden": write(repo, ".env", "SECRET=1\n"),
        "node_modules": write(repo, "node_modules/pkg/index.js", "module.exports = 1;\n"),
        "vendored": write(repo, "vendor/lib.js", "function lib() { return 1; }\n"),
        "image": write(repo, "logo.png", b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"),
        "blob": write(repo, "data.bin2", b"\x00\x01\x02\x03binary\x00payload"),
    }
    return files


class MemorySink:
    """In-memory sink recording every upload."""

    def __init__(
        self,
        existing: Optional[Dict[str, str]] = None,
        fail_paths: Optional[set] = None,
        raise_paths: Optional[set] = None,
        on_upload: Optional[Callable[[str], None]] = None,
    ):
        self.records: Dict[str, str] = dict(existing or {})
        self.contents: Dict[str, str] = {}
        self.uploads: List[str] = []
        self.fail_paths = fail_paths or set()
        self.raise_paths = raise_paths or set()
        self.on_upload = on_upload
        self._lock = threading.Lock()

    def list_files(self) -> List[IndexRecord]:
        return [IndexRecord(p, f) for p, f in sorted(self.records.items())]

    def upload_file(self, path, content, fingerprint, size, last_modified) -> bool:
        if path in self.raise_paths:
            raise RuntimeError(f"sink exploded on {path}")
        if path in self.fail_paths:
            return False
        with self._lock:
            self.uploads.append(path)
            self.records[path] = fingerprint
            self.contents[path] = content
        if self.on_upload:
            self.on_upload(path)
        return True

    def get_info(self) -> StoreInfo:
        return StoreInfo(
            file_count=len(self.records),
            total_size=sum(len(c) for c in self.contents.values()),
            last_updated=None,
        )


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()
