"""
Declarative asset injection: copy files in, create symlinks and directories.

Copy sources live in the patch's private `assets/` directory. Symlink
sources are resolved against the install root (absolute paths are kept)
and the link is written relative to the destination's parent so the
install tree stays relocatable.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from patchkeeper.core.errors import AssetSourceError, PatcherError
from patchkeeper.models.patch import ASSETS_DIR, AssetOperation, AssetType, PatchState

logger = logging.getLogger(__name__)


def _copy_source(op: AssetOperation, patch_dir: Path) -> Path:
    return patch_dir / ASSETS_DIR / op.src


def _is_satisfied(op: AssetOperation, install_dir: Path, patch_dir: Path) -> bool:
    dest = install_dir / op.dest
    if op.type == AssetType.SYMLINK:
        return dest.is_symlink()
    if op.type == AssetType.MKDIR:
        return dest.is_dir()
    if _copy_source(op, patch_dir).is_dir():
        return dest.is_dir() and not dest.is_symlink()
    return dest.is_file() and not dest.is_symlink()


def check_assets(
    ops: list[AssetOperation], install_dir: Path, patch_dir: Path
) -> tuple[PatchState, str]:
    """
    Determine whether every asset operation is already in place.

    Returns:
        (state, message): Applied when all destinations are satisfied,
        Pending when any is missing or of the wrong type, Error when the
        patch declares no operations at all
    """
    if not ops:
        return PatchState.ERROR, "No asset operations declared"

    missing = [op.dest for op in ops if not _is_satisfied(op, install_dir, patch_dir)]
    if missing:
        return PatchState.PENDING, f"Missing assets: {', '.join(missing)}"
    return PatchState.APPLIED, "Already applied"


def _drop_symlink(path: Path) -> None:
    # Copies must replace a link, never write through it
    if path.is_symlink():
        path.unlink()


def _copy_file(src: Path, dest: Path) -> None:
    _drop_symlink(dest)
    shutil.copyfile(src, dest)


def _copy_tree(src: Path, dest: Path) -> None:
    _drop_symlink(dest)
    dest.mkdir(parents=True, exist_ok=True)
    for entry in sorted(src.iterdir()):
        target = dest / entry.name
        if entry.is_dir():
            _copy_tree(entry, target)
        else:
            _copy_file(entry, target)


def _remove_existing(dest: Path) -> None:
    try:
        if dest.is_dir() and not dest.is_symlink():
            shutil.rmtree(dest)
        else:
            dest.unlink()
    except FileNotFoundError:
        pass


def apply_asset(op: AssetOperation, install_dir: Path, patch_dir: Path) -> str:
    """Execute one asset operation and return a short description of it."""
    dest = install_dir / op.dest

    if op.type == AssetType.MKDIR:
        dest.mkdir(parents=True, exist_ok=True)
        return f"mkdir {op.dest}"

    if op.type == AssetType.SYMLINK:
        source = Path(op.src)
        if not source.is_absolute():
            source = install_dir / source
        _remove_existing(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        link_target = os.path.relpath(source, dest.parent)
        dest.symlink_to(link_target)
        return f"symlink {op.dest} -> {link_target}"

    source = _copy_source(op, patch_dir)
    if not source.exists():
        raise AssetSourceError(
            f"Asset source not found: {op.src} (expected in {patch_dir / ASSETS_DIR})",
            details={"src": op.src, "dest": op.dest},
        )
    if source.is_dir():
        _copy_tree(source, dest)
    else:
        dest.parent.mkdir(parents=True, exist_ok=True)
        _copy_file(source, dest)
    return f"copy {op.src} -> {op.dest}"


def apply_assets(ops: list[AssetOperation], install_dir: Path, patch_dir: Path) -> list[str]:
    """
    Execute asset operations in order.

    A failure aborts the remaining operations; earlier ones are not rolled back.

    Raises:
        AssetSourceError: If a Copy source is missing
        PatcherError: If the filesystem rejects an operation
    """
    actions: list[str] = []
    for op in ops:
        try:
            action = apply_asset(op, install_dir, patch_dir)
        except OSError as e:
            raise PatcherError(f"Asset operation failed for {op.dest}: {e}") from e
        logger.debug(action)
        actions.append(action)
    return actions
