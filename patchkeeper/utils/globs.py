"""
Restricted wildcard matching for target file patterns.

Only `*` and `?` are supported, and only within the last path component:
`dist/gateway-cli-*.js` lists `dist/` and matches each entry name.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_SPECIAL_CHARS = re.compile(r"[.+^${}()|\[\]\\]")


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a `*`/`?` wildcard pattern into an anchored regex."""
    escaped = _SPECIAL_CHARS.sub(lambda m: "\\" + m.group(0), pattern)
    escaped = escaped.replace("*", ".*").replace("?", ".")
    return re.compile(f"^{escaped}$", re.DOTALL)


def match_glob(filename: str, pattern: str) -> bool:
    """Return True if a single path component matches the wildcard pattern."""
    return glob_to_regex(pattern).match(filename) is not None


def resolve_target_files(patterns: list[str], root: Path) -> list[Path]:
    """
    Resolve wildcard patterns against a directory tree.

    Each pattern is split into (directory, leaf-pattern); the directory is
    listed (non-recursively) and entries whose names match are returned in
    sorted listing order. Missing directories contribute nothing.

    Args:
        patterns: Patterns relative to root (e.g. "dist/gateway-cli-*.js")
        root: Install root the patterns are relative to

    Returns:
        Matching paths, in pattern order then listing order
    """
    results: list[Path] = []
    for pattern in patterns:
        rel = Path(pattern)
        search_dir = root / rel.parent
        try:
            entries = sorted(p.name for p in search_dir.iterdir())
        except OSError:
            logger.debug(f"directory not found for pattern '{pattern}': {search_dir}")
            continue

        for entry in entries:
            if match_glob(entry, rel.name):
                path = search_dir / entry
                if path not in results:
                    results.append(path)
    return results
