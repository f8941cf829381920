"""
Error taxonomy for the patch engine.

Per-patch failures are captured as an Error state by the state machine;
these exceptions are raised internally and translated into messages.
"""

from __future__ import annotations

from typing import Any


class PatcherError(Exception):
    """Base class for all patchkeeper errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigError(PatcherError):
    """Raised when the patcher configuration file is invalid."""

    def __init__(self, issues: list[str], path: str | None = None):
        self.issues = issues
        where = f" ({path})" if path else ""
        msg = f"Invalid patcher configuration{where}:\n" + "\n".join(
            f"  - {issue}" for issue in issues
        )
        super().__init__(msg, details={"issues": issues})


class MetadataError(PatcherError):
    """Raised when a patch record is missing, unreadable, or invalid."""


class TargetResolutionError(PatcherError):
    """Raised when a patch's target patterns match no files."""


class TransformError(PatcherError):
    """Raised when a content transform throws or its input cannot be read."""


class AssetSourceError(PatcherError):
    """Raised when a declared Copy source does not exist in the asset area."""


class ImportMappingError(PatcherError):
    """Raised when no hunk of a PR could be mapped to any bundle file."""


class PRFetchError(PatcherError):
    """Raised when pull-request data cannot be retrieved."""


class PartialImportWarning(UserWarning):
    """Issued when a PR import succeeds but some hunks could not be mapped."""
