"""
Ingestion Package - Decides which files of a codebase become searchable.

Modules:
    - config: Per-run configuration
    - ignore: Layered gitignore-style exclusion rules
    - enumerator: Candidate discovery (git listing or traversal)
    - classifier: Binary/generated/minified/vendored filtering
    - scaling: Codebase metrics and size-class policy
    - fingerprint: xxHash change detection
    - scheduler: Batching and upload driving
    - store: Sink contract and SQLite reference sink
    - orchestrator: Main entry point

Pipeline Flow:
    Enumerate → Classify → Measure → Detect changes → Upload in batches

Usage:
    from ingestion import Orchestrator

    orchestrator = Orchestrator()
    report = await orchestrator.run("path/to/repo")
"""

from .config import IndexerConfig
from .orchestrator import Orchestrator, index_codebase, run_index

__all__ = ["IndexerConfig", "Orchestrator", "index_codebase", "run_index"]
