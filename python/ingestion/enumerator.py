"""
Enumerator - Candidate file discovery.

Prefers git's own listing (tracked plus untracked-but-not-ignored files)
when the root sits inside a work tree, and falls back to a manual
traversal otherwise. Either way the ignore engine is applied afterwards,
since git knows nothing about the tool's own ignore file.
"""

import logging
import os
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Iterator, List, Optional

from .config import IndexerConfig
from .errors import handle_error
from .ignore import IgnoreEngine
from .models import CandidatePath


logger = logging.getLogger(__name__)


def is_git_work_tree(root: Path, timeout: float = 30.0) -> bool:
    """Return True if ``root`` is inside a git work tree. Never raises."""
    if shutil.which("git") is None:
        return False
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git probe failed for {root}: {e}")
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def git_list_files(root: Path, timeout: float = 30.0) -> Optional[List[CandidatePath]]:
    """
    List tracked and untracked-not-ignored files relative to ``root``.

    Returns None when git cannot produce a listing, so the caller can fall
    back to traversal.
    """
    try:
        result = subprocess.run(
            ["git", "ls-files", "--cached", "--others", "--exclude-standard", "-z"],
            cwd=str(root),
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git ls-files failed for {root}: {e}")
        return None

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        logger.debug(f"git ls-files exited {result.returncode} in {root}: {stderr}")
        return None

    output = result.stdout.decode("utf-8", errors="surrogateescape")
    return [entry for entry in output.split("\0") if entry.strip()]


class FileEnumerator:
    """
    Restartable candidate enumeration.

    Each iteration starts over from scratch; nothing is cached between
    passes. Yields root-relative "/"-separated paths.
    """

    def __init__(
        self,
        root: Path,
        config: IndexerConfig,
        ignore: IgnoreEngine,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.root = Path(root)
        self.config = config
        self.ignore = ignore
        self.cancel_event = cancel_event
        self.source: Optional[str] = None   # "git" or "walk" after a pass

    def __iter__(self) -> Iterator[CandidatePath]:
        return self.enumerate()

    def enumerate(self) -> Iterator[CandidatePath]:
        """Yield candidate paths, git listing first, traversal as fallback."""
        raw: Optional[Iterator[CandidatePath]] = None

        if self.config.use_git and is_git_work_tree(self.root, self.config.git_timeout):
            listed = git_list_files(self.root, self.config.git_timeout)
            if listed is not None:
                self.source = "git"
                logger.debug(f"git listed {len(listed)} paths under {self.root}")
                raw = iter(listed)

        if raw is None:
            self.source = "walk"
            raw = self.walk()

        seen = set()
        for path in raw:
            rel = path.replace(os.sep, "/")
            if rel in seen:
                continue
            seen.add(rel)
            if self.ignore.is_ignored(rel):
                continue
            yield rel

    def walk(self) -> Iterator[CandidatePath]:
        """
        Manual traversal with an explicit stack of pending directories.

        Hidden entries and ignored directories are pruned as soon as they
        are seen. Unreadable directories are skipped, siblings continue.
        """
        stack: List[str] = [""]

        while stack:
            if self._cancelled():
                logger.info("Traversal cancelled")
                return

            rel_dir = stack.pop()
            directory = self.root / rel_dir if rel_dir else self.root

            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                handle_error(e, directory, "walk")
                continue

            subdirs: List[str] = []
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if self.ignore.is_ignored(rel, is_dir=True):
                            continue
                        subdirs.append(rel)
                    elif entry.is_file(follow_symlinks=False):
                        if self.ignore.is_ignored(rel):
                            continue
                        yield rel
                except OSError as e:
                    handle_error(e, Path(entry.path), "walk_entry")
                    continue

            # Reverse so the stack pops subdirectories in name order
            stack.extend(reversed(subdirs))

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def enumerate_candidates(
    root: Path,
    config: Optional[IndexerConfig] = None,
    ignore: Optional[IgnoreEngine] = None,
) -> List[CandidatePath]:
    """
    Convenience function to list candidates under a root.

    Usage:
        for path in enumerate_candidates(Path(".")):
            print(path)
    """
    config = config or IndexerConfig()
    ignore = ignore or IgnoreEngine.build(Path(root), config)
    return list(FileEnumerator(Path(root), config, ignore))
