"""
Version range gating.

Versions are dotted numeric strings with an optional `-suffix` that is
ignored for comparison: "2.6" == "2.6.0" == "2.6.0-beta.1".
The range is half-open: min_version inclusive, max_version exclusive.
"""

from __future__ import annotations

import re
from typing import NamedTuple

_LEADING_DIGITS = re.compile(r"^\d+")


class VersionMatch(NamedTuple):
    matches: bool
    reason: str


def _components(version: str) -> list[int]:
    core = version.strip().split("-", 1)[0]
    parts: list[int] = []
    for piece in core.split("."):
        m = _LEADING_DIGITS.match(piece)
        parts.append(int(m.group(0)) if m else 0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """
    Compare two version strings component-wise.

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b
    """
    left, right = _components(a), _components(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    for x, y in zip(left, right):
        if x != y:
            return -1 if x < y else 1
    return 0


def in_range(version: str, min_version: str | None = None, max_version: str | None = None) -> VersionMatch:
    """Check whether version falls in [min_version, max_version)."""
    if min_version and compare_versions(version, min_version) < 0:
        return VersionMatch(False, f"Version {version} is below minimum {min_version}")
    if max_version and compare_versions(version, max_version) >= 0:
        return VersionMatch(False, f"Version {version} is at or above maximum {max_version} (exclusive)")
    return VersionMatch(True, f"Version {version} is within range")
