"""Data models for patchkeeper."""

from patchkeeper.models.hunk import Hunk
from patchkeeper.models.patch import (
    AssetOperation,
    AssetType,
    PatchKind,
    PatchRecord,
    PatchState,
    PatchStatus,
    RunState,
    RunSummary,
    load_patch_record,
    save_patch_record,
)
from patchkeeper.models.pr import ImportResult, PRFile, PRMetadata

__all__ = [
    "AssetOperation",
    "AssetType",
    "Hunk",
    "ImportResult",
    "load_patch_record",
    "PatchKind",
    "PatchRecord",
    "PatchState",
    "PatchStatus",
    "PRFile",
    "PRMetadata",
    "RunState",
    "RunSummary",
    "save_patch_record",
]
