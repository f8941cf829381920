"""
Per-patch state determination and the Pending -> Applied transition.

Evaluation order for one patch, first applicable step wins:

    1. patch.yaml unreadable/invalid     -> error
    2. enabled is false                  -> disabled
    3. resolved_at already set           -> resolved (sticky)
    4. installed version outside range   -> disabled
    5. kind: assets                      -> existence checks
    6. target patterns match nothing     -> error
    7. per target file, in listing order, the content rules below;
       no file triggering a rule         -> applied

Content rules are an ordered list of (predicate, state, message) evaluated
top to bottom against each file; the first predicate that holds decides
that file. An applied rule lets the scan continue with the next file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from patchkeeper.core.assets import apply_assets, check_assets
from patchkeeper.core.config import PatcherConfig
from patchkeeper.core.errors import MetadataError, PatcherError, TargetResolutionError, TransformError
from patchkeeper.core.hunks import (
    apply_hunks,
    hunks_defect_present,
    hunks_gone,
    hunks_landed,
    parse_hunks,
)
from patchkeeper.core.programmable import get_edit
from patchkeeper.core.versions import in_range
from patchkeeper.models.hunk import Hunk
from patchkeeper.models.patch import (
    HUNKS_FILE,
    PatchKind,
    PatchRecord,
    PatchState,
    PatchStatus,
    load_patch_record,
    save_patch_record,
)
from patchkeeper.utils.globs import resolve_target_files

logger = logging.getLogger(__name__)

MSG_DISABLED = "Patch is disabled"
MSG_PENDING = "Patch needed"
MSG_ALREADY_APPLIED = "Already applied"
MSG_UPSTREAM_FIX = "Upstream fix detected"
MSG_CODE_GONE = "Original code no longer present; upstream may have fixed this"

BACKUP_SUFFIX = ".bak"

Predicate = Callable[[str, str], bool]
Transform = Callable[[str, str], str]


@dataclass(frozen=True)
class ContentRule:
    """A content predicate and the state it implies when it holds."""

    predicate: Predicate
    state: PatchState
    message: str


def hunk_rules(hunks: list[Hunk]) -> list[ContentRule]:
    """
    Rules for text-hunk patches.

    Landed fixes are recognised first so a file holding both the old and the
    new text (e.g. insertion hunks whose new text contains the anchor) is
    classified applied rather than pending.
    """
    return [
        ContentRule(lambda content, _path: hunks_landed(content, hunks), PatchState.APPLIED, MSG_ALREADY_APPLIED),
        ContentRule(lambda content, _path: hunks_gone(content, hunks), PatchState.RESOLVED, MSG_CODE_GONE),
        ContentRule(lambda content, _path: hunks_defect_present(content, hunks), PatchState.PENDING, MSG_PENDING),
    ]


def programmable_rules(edit) -> list[ContentRule]:
    return [
        ContentRule(edit.is_resolved, PatchState.RESOLVED, MSG_UPSTREAM_FIX),
        ContentRule(edit.check, PatchState.PENDING, MSG_PENDING),
    ]


def evaluate_rules(files: list[Path], rules: list[ContentRule]) -> tuple[PatchState, str]:
    """
    Run content rules over target files; applied is the default.

    A rule yielding applied settles only the current file and scanning moves
    on; any other state stops the scan and is returned.

    Raises:
        TransformError: If a file cannot be read or a predicate throws
    """
    for path in files:
        content = read_target(path)
        for rule in rules:
            try:
                hit = rule.predicate(content, str(path))
            except Exception as e:
                raise TransformError(f"Check failed: {e}") from e
            if hit:
                if rule.state == PatchState.APPLIED:
                    break
                return rule.state, rule.message
    return PatchState.APPLIED, MSG_ALREADY_APPLIED


def read_target(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TransformError(f"Could not read {path}: {e}") from e


def write_target(path: Path, original: str, patched: str, backup: bool) -> None:
    """Write patched content, persisting the pre-image first when backups are on."""
    if backup:
        backup_path = path.with_name(path.name + BACKUP_SUFFIX)
        backup_path.write_text(original, encoding="utf-8")
        logger.debug(f"backed up {path}")
    path.write_text(patched, encoding="utf-8")
    logger.info(f"patched {path}")


def log_resolved(record: PatchRecord, reason: str) -> None:
    logger.warning(
        f'=== PATCH RESOLVED: "{record.name}" ===\n'
        f"  Reason: {reason}\n"
        f"  Issue: {record.issue or 'N/A'}\n"
        "  This patch is no longer needed and has been marked as resolved."
    )


class PatchStateMachine:
    """
    Computes and advances the state of individual patches.

    Args:
        config: Patcher configuration (install root, backups)
        installed_version: Version of the install tree, or None if unknown
                           (version gating is skipped when unknown)
    """

    def __init__(self, config: PatcherConfig, installed_version: str | None = None):
        self.config = config
        self.installed_version = installed_version

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _status(self, patch_dir: Path, state: PatchState, message: str, record: PatchRecord | None = None, **kwargs) -> PatchStatus:
        return PatchStatus(
            name=patch_dir.name,
            state=state,
            message=message,
            record=record,
            directory=patch_dir,
            **kwargs,
        )

    def _load_hunks(self, patch_dir: Path) -> list[Hunk]:
        path = patch_dir / HUNKS_FILE
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise MetadataError(f"Could not read {HUNKS_FILE}: {e}") from e
        hunks = parse_hunks(text)
        if not hunks:
            raise MetadataError(f"No valid hunks in {HUNKS_FILE}")
        return hunks

    def _resolve_targets(self, record: PatchRecord) -> list[Path]:
        files = resolve_target_files(record.target_files, self.config.install_dir)
        if not files:
            raise TargetResolutionError(
                f"No files matched patterns: {', '.join(record.target_files) or '(none)'}"
            )
        return files

    def _content_rules(self, record: PatchRecord, patch_dir: Path) -> list[ContentRule]:
        if record.kind == PatchKind.HUNKS:
            return hunk_rules(self._load_hunks(patch_dir))
        return programmable_rules(get_edit(record.name, patch_dir))

    def _transform(self, record: PatchRecord, patch_dir: Path) -> Transform:
        if record.kind == PatchKind.HUNKS:
            hunks = self._load_hunks(patch_dir)
            return lambda content, _path: apply_hunks(content, hunks)
        return get_edit(record.name, patch_dir).apply

    def _persist_resolved(self, patch_dir: Path, record: PatchRecord, reason: str) -> None:
        record.mark_resolved(reason)
        try:
            save_patch_record(patch_dir, record)
        except OSError as e:
            logger.error(f"failed to record resolution for '{record.name}': {e}")
        log_resolved(record, reason)

    # -------------------------------------------------------------------------
    # Check
    # -------------------------------------------------------------------------

    def check(self, patch_dir: Path) -> PatchStatus:
        """Determine the current state of the patch in patch_dir."""
        try:
            record = load_patch_record(patch_dir)
        except MetadataError as e:
            return self._status(patch_dir, PatchState.ERROR, str(e))

        if not record.enabled:
            return self._status(patch_dir, PatchState.DISABLED, MSG_DISABLED, record)

        if record.resolved_at:
            return self._status(
                patch_dir, PatchState.RESOLVED, record.resolved_reason or "Resolved upstream", record
            )

        if self.installed_version:
            match = in_range(self.installed_version, record.min_version, record.max_version)
            if not match.matches:
                return self._status(
                    patch_dir, PatchState.DISABLED, match.reason, record, version_gated=True
                )

        if record.kind == PatchKind.ASSETS:
            state, message = check_assets(record.assets, self.config.install_dir, patch_dir)
            return self._status(patch_dir, state, message, record)

        try:
            files = self._resolve_targets(record)
            state, message = evaluate_rules(files, self._content_rules(record, patch_dir))
        except PatcherError as e:
            return self._status(patch_dir, PatchState.ERROR, str(e), record)

        if state == PatchState.RESOLVED:
            self._persist_resolved(patch_dir, record, message)
        return self._status(patch_dir, state, message, record)

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def apply(self, patch_dir: Path) -> PatchStatus:
        """
        Move a pending patch to applied.

        Any non-pending state is returned unchanged. Files written before a
        failure are not reverted.
        """
        status = self.check(patch_dir)
        record = status.record
        if status.state != PatchState.PENDING or record is None:
            return status

        try:
            if record.kind == PatchKind.ASSETS:
                actions = apply_assets(record.assets, self.config.install_dir, patch_dir)
                message = f"Applied {len(actions)} asset operation(s)"
            else:
                touched = self._apply_content(record, patch_dir)
                message = f"Applied to {touched} file(s)"
        except PatcherError as e:
            logger.error(f"failed to apply patch '{record.name}': {e}")
            return self._status(patch_dir, PatchState.ERROR, f"Apply failed: {e}", record)

        record.mark_applied(self.installed_version)
        try:
            save_patch_record(patch_dir, record)
        except OSError as e:
            return self._status(patch_dir, PatchState.ERROR, f"Applied but could not update patch record: {e}", record)

        return self._status(patch_dir, PatchState.APPLIED, message, record, changed=True)

    def _apply_content(self, record: PatchRecord, patch_dir: Path) -> int:
        files = self._resolve_targets(record)
        transform = self._transform(record, patch_dir)
        touched = 0
        for path in files:
            content = read_target(path)
            try:
                patched = transform(content, str(path))
            except Exception as e:
                raise TransformError(str(e)) from e
            if not isinstance(patched, str):
                raise TransformError(f"apply() returned {type(patched).__name__}, expected str")
            if patched == content:
                continue
            try:
                write_target(path, content, patched, self.config.backup_before_patch)
            except OSError as e:
                raise TransformError(f"Could not write {path}: {e}") from e
            touched += 1
        return touched
