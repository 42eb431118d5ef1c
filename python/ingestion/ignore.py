"""
Ignore Engine - Layered gitignore-style exclusion rules.

Rules are stacked in precedence order (built-in defaults, .gitignore, the
tool's own ignore file, caller patterns) and compiled once with pathspec's
gitignore semantics, so a later "!pattern" re-includes what an earlier
pattern excluded.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import pathspec

from .config import IndexerConfig


logger = logging.getLogger(__name__)


DEFAULT_IGNORE_PATTERNS = [
    # Version control
    ".git",
    ".svn",
    ".hg",
    # Dependencies
    "node_modules",
    "venv",
    ".venv",
    "env",
    ".eggs",
    "*.egg-info",
    # Build outputs
    "dist",
    "build",
    "out",
    ".next",
    ".nuxt",
    "coverage",
    ".nyc_output",
    # Caches
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".tox",
    "*.pyc",
    # Lockfiles
    "*.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    # Minified, bundled and generated assets
    "*.min.js",
    "*.min.css",
    "*.map",
    "*.bundle.js",
    "*.chunk.js",
    "*.d.ts",
    # Local secrets and scratch files
    ".env.local",
    ".env.*.local",
    "*.log",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*.swo",
    ".DS_Store",
    "Thumbs.db",
    # Media
    "*.ico",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.svg",
    "*.webp",
    "*.mp3",
    "*.mp4",
    "*.wav",
    "*.avi",
    "*.mov",
    # Documents
    "*.pdf",
    "*.doc",
    "*.docx",
    "*.xls",
    "*.xlsx",
    "*.ppt",
    "*.pptx",
    # Archives and binaries
    "*.zip",
    "*.tar",
    "*.gz",
    "*.rar",
    "*.7z",
    "*.exe",
    "*.dll",
    "*.so",
    "*.dylib",
    "*.bin",
    "*.o",
    "*.a",
    "*.wasm",
    # Fonts
    "*.ttf",
    "*.otf",
    "*.woff",
    "*.woff2",
    "*.eot",
]


@dataclass(frozen=True)
class IgnoreRule:
    """One pattern and the file it came from."""
    pattern: str
    source: str

    @property
    def negated(self) -> bool:
        return self.pattern.startswith("!")


@dataclass(frozen=True)
class IgnoreRuleSet:
    """Ordered, immutable rules. Later rules take precedence."""
    rules: Tuple[IgnoreRule, ...]

    @property
    def patterns(self) -> List[str]:
        return [r.pattern for r in self.rules]

    def sources(self) -> List[str]:
        seen: List[str] = []
        for rule in self.rules:
            if rule.source not in seen:
                seen.append(rule.source)
        return seen


def read_ignore_file(path: Path) -> List[str]:
    """
    Read patterns from an ignore file.

    Blank lines and "#" comments are dropped. A missing or unreadable file
    yields no patterns; it never aborts indexing.
    """
    if not path.is_file():
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Skipping unreadable ignore file {path}: {e}")
        return []

    patterns = []
    for raw in text.splitlines():
        line = raw.rstrip()
        if not line.strip() or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns


def load_rules(
    root: Path,
    config: IndexerConfig,
    extra_patterns: Optional[Iterable[str]] = None,
) -> IgnoreRuleSet:
    """Collect every rule that applies to ``root``, lowest precedence first."""
    rules: List[IgnoreRule] = []

    if config.use_default_ignores:
        defaults = DEFAULT_IGNORE_PATTERNS + [
            config.metadata_dir_name,
            f"{config.metadata_dir_name}rc.yaml",
        ]
        rules.extend(IgnoreRule(p, "default") for p in defaults)

    for name in (".gitignore", config.ignore_file_name):
        rules.extend(IgnoreRule(p, name) for p in read_ignore_file(root / name))

    extras = list(config.extra_ignore_patterns)
    if extra_patterns:
        extras.extend(extra_patterns)
    rules.extend(IgnoreRule(p, "extra") for p in extras if p.strip())

    return IgnoreRuleSet(rules=tuple(rules))


class IgnoreEngine:
    """
    Compiled predicate over root-relative paths.

    Directory checks append a trailing slash so directory-only patterns
    ("logs/") prune whole subtrees during traversal.
    """

    def __init__(self, rule_set: IgnoreRuleSet):
        self.rule_set = rule_set
        self._spec = pathspec.GitIgnoreSpec.from_lines(rule_set.patterns)

    @classmethod
    def build(
        cls,
        root: Path,
        config: IndexerConfig,
        extra_patterns: Optional[Iterable[str]] = None,
    ) -> "IgnoreEngine":
        rule_set = load_rules(root, config, extra_patterns)
        engine = cls(rule_set)
        logger.debug(
            f"Ignore rules for {root}: {len(rule_set.rules)} patterns "
            f"from {', '.join(rule_set.sources()) or 'nowhere'}"
        )
        return engine

    def is_ignored(self, path: str, is_dir: bool = False) -> bool:
        rel = _normalize(path)
        if not rel:
            return False
        if is_dir:
            rel = rel.rstrip("/") + "/"
        return self._spec.match_file(rel)

    def __call__(self, path: str) -> bool:
        return self.is_ignored(path, is_dir=path.endswith("/"))


def build_ignore_predicate(
    root: Path,
    extra_patterns: Optional[Iterable[str]] = None,
    config: Optional[IndexerConfig] = None,
) -> Callable[[str], bool]:
    """
    Build the ignore predicate for ``root``.

    Usage:
        ignored = build_ignore_predicate(Path("."), ["*.snap"])
        if ignored("src/app.min.js"):
            ...
    """
    return IgnoreEngine.build(Path(root), config or IndexerConfig(), extra_patterns)


def _normalize(path: str) -> str:
    rel = str(path).replace("\\", "/")
    while rel.startswith("./"):
        rel = rel[2:]
    return rel.lstrip("/")
