"""
Pull-request import models.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from patchkeeper.models.hunk import Hunk

PREVIEW_LENGTH = 100
UNMAPPED_REASON = "pattern not found in any bundle file"


class PRFile(BaseModel):
    path: str
    status: str = "modified"
    patch: str = ""


class PRMetadata(BaseModel):
    """The slice of pull-request data the importer needs."""

    number: int
    title: str = ""
    body: str = ""
    url: str = ""
    state: str = ""
    files: list[PRFile] = Field(default_factory=list)


class MappedHunk(BaseModel):
    hunk: Hunk
    pattern: str
    bundle_path: str


class UnmappedHunk(BaseModel):
    source_path: str | None = None
    preview: str = Field(..., max_length=PREVIEW_LENGTH)
    reason: str = UNMAPPED_REASON

    @classmethod
    def from_hunk(cls, hunk: Hunk, reason: str = UNMAPPED_REASON) -> "UnmappedHunk":
        return cls(
            source_path=hunk.source_path,
            preview=hunk.old_text[:PREVIEW_LENGTH],
            reason=reason,
        )


class ImportResult(BaseModel):
    """Outcome of importing a pull request as a patch."""

    ok: bool
    patch_name: str | None = None
    pr_number: int | None = None
    mapped_hunks: list[MappedHunk] = Field(default_factory=list)
    unmapped_hunks: list[UnmappedHunk] = Field(default_factory=list)
    files_written: list[str] = Field(default_factory=list)
    dry_run: bool = False
    error: str | None = None

    @classmethod
    def fail(cls, error: str, **kwargs) -> "ImportResult":
        return cls(ok=False, error=error, **kwargs)
