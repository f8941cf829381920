"""
Patch record and run-state models.

A patch lives in its own directory under the patches dir:

    <patches_dir>/<name>/patch.yaml     # PatchRecord
    <patches_dir>/<name>/hunks.txt      # BEFORE/AFTER blocks (kind: hunks)
    <patches_dir>/<name>/patch.py       # check/is_resolved/apply (kind: programmable)
    <patches_dir>/<name>/assets/        # Copy sources (kind: assets)
    <patches_dir>/<name>/original.diff  # Verbatim PR diff (PR imports only)
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from patchkeeper.core.errors import MetadataError

logger = logging.getLogger(__name__)

PATCH_FILE = "patch.yaml"
HUNKS_FILE = "hunks.txt"
PROGRAM_FILE = "patch.py"
ASSETS_DIR = "assets"
ORIGINAL_DIFF_FILE = "original.diff"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class PatchKind(str, Enum):
    PROGRAMMABLE = "programmable"
    HUNKS = "hunks"
    ASSETS = "assets"


class AssetType(str, Enum):
    COPY = "copy"
    SYMLINK = "symlink"
    MKDIR = "mkdir"


class AssetOperation(BaseModel):
    """One declarative file/symlink/directory injection."""

    src: str = Field(default="", description="Source; meaning depends on type")
    dest: str = Field(..., min_length=1, description="Destination relative to the install root")
    type: AssetType


class PatchRecord(BaseModel):
    """Metadata for a single patch, stored as patch.yaml."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    description: str = ""
    issue: str | None = Field(default=None, description="Upstream issue or PR URL")
    enabled: bool = True
    kind: PatchKind = PatchKind.PROGRAMMABLE
    target_files: list[str] = Field(
        default_factory=list,
        description="Glob patterns relative to the install root (e.g. 'dist/gateway-cli-*.js')",
    )
    min_version: str | None = Field(default=None, description="Inclusive lower bound")
    max_version: str | None = Field(default=None, description="Exclusive upper bound")
    assets: list[AssetOperation] = Field(default_factory=list)

    applied_at: str | None = None
    applied_version: str | None = None
    resolved_at: str | None = None
    resolved_reason: str | None = None

    @model_validator(mode="after")
    def _assets_only_for_asset_kind(self) -> "PatchRecord":
        if self.assets and self.kind != PatchKind.ASSETS:
            raise ValueError("assets may only be declared on patches of kind 'assets'")
        return self

    def mark_applied(self, version: str | None) -> None:
        self.applied_at = utc_now_iso()
        self.applied_version = version

    def mark_resolved(self, reason: str) -> None:
        self.resolved_at = utc_now_iso()
        self.resolved_reason = reason

    def clear_resolved(self) -> None:
        self.resolved_at = None
        self.resolved_reason = None

    def to_yaml_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def _friendly_validation_errors(name: str, exc: ValidationError) -> MetadataError:
    issues: list[str] = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error["loc"]) or "patch"
        if error["type"] == "missing":
            issues.append(f"{loc} is required")
        elif error["type"] == "enum":
            allowed = error.get("ctx", {}).get("expected", "")
            issues.append(f"{loc}: must be one of {allowed}")
        else:
            issues.append(f"{loc}: {error['msg']}")
    return MetadataError(
        f"Invalid {PATCH_FILE} for patch '{name}': " + "; ".join(issues),
        details={"issues": issues},
    )


def load_patch_record(patch_dir: Path) -> PatchRecord:
    """
    Load and validate a patch record from <patch_dir>/patch.yaml.

    Raises:
        MetadataError: If the file is missing, not YAML, or fails validation
    """
    path = patch_dir / PATCH_FILE
    name = patch_dir.name
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise MetadataError(f"Missing {PATCH_FILE} for patch '{name}'") from e
    except (OSError, yaml.YAMLError) as e:
        raise MetadataError(f"Could not read {PATCH_FILE} for patch '{name}': {e}") from e

    if not isinstance(data, dict):
        raise MetadataError(f"{PATCH_FILE} for patch '{name}' is empty or not a mapping")

    bad_keys = [repr(k) for k in data if not isinstance(k, str)]
    if bad_keys:
        raise MetadataError(
            f"Invalid {PATCH_FILE} for patch '{name}': keys must be strings, got {', '.join(bad_keys)}"
        )

    try:
        return PatchRecord.model_validate(data)
    except ValidationError as e:
        raise _friendly_validation_errors(name, e) from e


def save_patch_record(patch_dir: Path, record: PatchRecord) -> Path:
    """Write a patch record back to <patch_dir>/patch.yaml, preserving field order."""
    patch_dir.mkdir(parents=True, exist_ok=True)
    path = patch_dir / PATCH_FILE
    with open(path, "w") as f:
        yaml.safe_dump(record.to_yaml_dict(), f, default_flow_style=False, sort_keys=False)
    return path


# =============================================================================
# Status
# =============================================================================


class PatchState(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    RESOLVED = "resolved"
    DISABLED = "disabled"
    ERROR = "error"


STATE_ICONS = {
    PatchState.PENDING: "[!]",
    PatchState.APPLIED: "[+]",
    PatchState.RESOLVED: "[~]",
    PatchState.DISABLED: "[-]",
    PatchState.ERROR: "[x]",
}


class PatchStatus(BaseModel):
    """Runtime status for a patch after evaluation."""

    name: str
    state: PatchState
    message: str
    record: PatchRecord | None = None
    directory: Path | None = None
    changed: bool = Field(default=False, description="True when this call wrote the fix")
    version_gated: bool = Field(default=False, description="Disabled by the version range")

    @property
    def icon(self) -> str:
        return STATE_ICONS.get(self.state, "[?]")

    @property
    def category(self) -> str:
        """Reporting bucket used by run summaries."""
        if self.state == PatchState.APPLIED:
            return "applied" if self.changed else "already_applied"
        if self.state == PatchState.DISABLED:
            return "version_skipped" if self.version_gated else "disabled"
        return self.state.value


# =============================================================================
# Run state
# =============================================================================


class PatchOutcome(BaseModel):
    state: str
    message: str
    applied_at: str | None = None


class RunState(BaseModel):
    """
    Process-wide audit cache, fully rewritten after each reconciliation pass.

    Never authoritative: a patch's own applied_at/resolved_at fields are.
    """

    last_reconciled_version: str | None = None
    last_reconciled_at: str | None = None
    per_patch_outcome: dict[str, PatchOutcome] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "RunState":
        """Load run state, starting fresh if the file is missing or corrupted."""
        if not path.exists():
            logger.debug("no existing state file, starting fresh")
            return cls()
        try:
            with open(path) as f:
                return cls(**json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Ignoring unreadable state file {path}: {e}")
            return cls()

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.model_dump_json(indent=2))

    def record(self, status: PatchStatus) -> None:
        applied_at = status.record.applied_at if status.record else None
        self.per_patch_outcome[status.name] = PatchOutcome(
            state=status.state.value,
            message=status.message,
            applied_at=applied_at,
        )


class RunSummary(BaseModel):
    """Status overview for `patchkeeper status` and reporting."""

    installed_version: str | None = None
    last_reconciled_version: str | None = None
    last_reconciled_at: str | None = None
    statuses: list[PatchStatus] = Field(default_factory=list)

    @property
    def patch_count(self) -> int:
        return len(self.statuses)

    def grouped(self) -> dict[str, list[str]]:
        """Patch names grouped by reporting category, in discovery order."""
        groups: dict[str, list[str]] = {}
        for status in self.statuses:
            groups.setdefault(status.category, []).append(status.name)
        return groups
