"""
Fingerprint - Content hashing and change detection using xxHash.

A file is re-indexed only when its content changed since the last run.
Comparison is by content digest keyed on the exact path; modification
times are never consulted, so touching a file does not trigger work and
a same-size edit within the same second still does.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Tuple, Union

import xxhash

from .models import FileRecord, IndexRecord


logger = logging.getLogger(__name__)


def fingerprint(content: Union[str, bytes]) -> str:
    """16-hex-char xxh64 digest of the content bytes."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return xxhash.xxh64(content).hexdigest()


def _as_mapping(existing: Union[Iterable[IndexRecord], Mapping[str, str]]) -> Dict[str, str]:
    if isinstance(existing, Mapping):
        return dict(existing)
    return {record.path: record.fingerprint for record in existing}


class ChangeDetector:
    """
    Splits accepted files into new-or-changed and unchanged.

    Built once per run from what the sink already holds.
    """

    def __init__(
        self,
        existing: Union[Iterable[IndexRecord], Mapping[str, str]] = (),
        force: bool = False,
    ):
        self.existing = _as_mapping(existing)
        self.force = force
        self._cache: Dict[str, str] = {}

    def fingerprint_of(self, record: FileRecord) -> str:
        """
        Digest of a record, computed once per path.

        Records read from disk carry the digest of their raw bytes; the
        decoded content is only hashed for records built without one.
        """
        if record.fingerprint is not None:
            return record.fingerprint
        digest = self._cache.get(record.path)
        if digest is None:
            digest = fingerprint(record.content_bytes)
            self._cache[record.path] = digest
        return digest

    def needs_indexing(self, record: FileRecord) -> bool:
        if self.force:
            return True
        previous = self.existing.get(record.path)
        if previous is None:
            return True
        return previous != self.fingerprint_of(record)

    def partition(self, records: Iterable[FileRecord]) -> Tuple[List[FileRecord], List[FileRecord]]:
        """Return (to_index, unchanged), each in input order."""
        to_index: List[FileRecord] = []
        unchanged: List[FileRecord] = []
        for record in records:
            if self.needs_indexing(record):
                to_index.append(record)
            else:
                unchanged.append(record)

        logger.info(
            f"Change detection: {len(to_index)} new or changed, "
            f"{len(unchanged)} unchanged{' (forced)' if self.force else ''}"
        )
        return to_index, unchanged


def needs_indexing(
    file: FileRecord,
    existing_records: Union[Iterable[IndexRecord], Mapping[str, str]],
    force: bool = False,
) -> bool:
    """
    Convenience function to check a single file.

    Usage:
        if needs_indexing(record, sink.list_files()):
            ...
    """
    return ChangeDetector(existing_records, force).needs_indexing(file)
