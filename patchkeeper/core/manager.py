"""
Reconciliation driver.

Discovers patch directories, runs each through the state machine in name
order, and keeps the run-state audit file up to date.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from patchkeeper.core.config import PatcherConfig
from patchkeeper.core.errors import MetadataError
from patchkeeper.core.hunks import HUNKS_TEMPLATE
from patchkeeper.core.programmable import PROGRAM_TEMPLATE
from patchkeeper.core.state_machine import PatchStateMachine
from patchkeeper.models.patch import (
    ASSETS_DIR,
    HUNKS_FILE,
    PROGRAM_FILE,
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
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SCAFFOLD_DESCRIPTION = "Describe what this patch fixes"


class PatchManager:
    """
    Runs patches against one install tree.

    Processing is strictly sequential; concurrent runs against the same
    install tree are not supported.
    """

    def __init__(self, config: PatcherConfig):
        self.config = config
        self.state = RunState()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load_state(self) -> RunState:
        self.state = RunState.load(self.config.state_file)
        logger.debug(f"loaded state: last_reconciled_version={self.state.last_reconciled_version}")
        return self.state

    def save_state(self) -> None:
        self.state.save(self.config.state_file)

    def get_installed_version(self) -> str | None:
        """Read the version from the install root's manifest, or None."""
        path = self.config.manifest_path
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"failed to read version manifest {path}: {e}")
            return None
        version = data.get("version") if isinstance(data, dict) else None
        return version if isinstance(version, str) and version else None

    def discover_patches(self) -> list[str]:
        """Patch directory names, sorted; dot-directories are skipped."""
        try:
            return sorted(
                p.name
                for p in self.config.patches_dir.iterdir()
                if p.is_dir() and not p.name.startswith(".")
            )
        except OSError:
            logger.debug("patches directory does not exist or is empty")
            return []

    def patch_dir(self, name: str) -> Path:
        return self.config.patches_dir / name

    def _machine(self) -> PatchStateMachine:
        return PatchStateMachine(self.config, self.get_installed_version())

    # -------------------------------------------------------------------------
    # Check / apply
    # -------------------------------------------------------------------------

    def check_patch(self, name: str) -> PatchStatus:
        return self._machine().check(self.patch_dir(name))

    def check_all(self) -> list[PatchStatus]:
        machine = self._machine()
        return [machine.check(self.patch_dir(name)) for name in self.discover_patches()]

    def apply_patch(self, name: str) -> PatchStatus:
        """Apply one patch and record its outcome in the run state."""
        status = self._machine().apply(self.patch_dir(name))
        if status.changed:
            self.load_state()
            self.state.record(status)
            self.save_state()
        return status

    def apply_all(self) -> list[PatchStatus]:
        machine = self._machine()
        results = []
        for name in self.discover_patches():
            status = machine.apply(self.patch_dir(name))
            if status.state == PatchState.ERROR:
                logger.error(f"patch '{name}': {status.message}")
            results.append(status)
        return results

    def run_auto_apply(self) -> list[PatchStatus]:
        """
        Full reconciliation pass: apply everything pending and rebuild the run state.

        Skipped entirely when the installed version cannot be determined.
        """
        self.load_state()
        version = self.get_installed_version()
        if not version:
            logger.warning("could not determine installed version; skipping reconciliation")
            return []

        names = self.discover_patches()
        if not names:
            logger.debug("no patches found; nothing to do")
            return []

        logger.info(f"checking {len(names)} patch(es) against version {version}...")
        results = self.apply_all()
        self._log_summary(results)

        self.state = RunState(last_reconciled_version=version, last_reconciled_at=utc_now_iso())
        for status in results:
            self.state.record(status)
        self.save_state()
        return results

    def _log_summary(self, results: list[PatchStatus]) -> None:
        summary = RunSummary(statuses=results)
        groups = summary.grouped()
        if groups.get("applied"):
            logger.info(f"applied {len(groups['applied'])} patch(es): {', '.join(groups['applied'])}")
        if groups.get("already_applied"):
            logger.debug(f"{len(groups['already_applied'])} patch(es) already applied")
        if groups.get("version_skipped"):
            logger.info(f"skipped by version range: {', '.join(groups['version_skipped'])}")
        if groups.get("resolved"):
            logger.warning(
                f"{len(groups['resolved'])} patch(es) resolved (no longer needed): "
                f"{', '.join(groups['resolved'])}"
            )
        errors = [s for s in results if s.state == PatchState.ERROR]
        if errors:
            logger.error(
                f"{len(errors)} patch(es) had errors: "
                + "; ".join(f"{s.name}: {s.message}" for s in errors)
            )

    def get_status_summary(self) -> RunSummary:
        self.load_state()
        return RunSummary(
            installed_version=self.get_installed_version(),
            last_reconciled_version=self.state.last_reconciled_version,
            last_reconciled_at=self.state.last_reconciled_at,
            statuses=self.check_all(),
        )

    # -------------------------------------------------------------------------
    # Authoring
    # -------------------------------------------------------------------------

    def scaffold_patch(self, name: str, kind: PatchKind | str = PatchKind.PROGRAMMABLE) -> Path:
        """
        Create a new patch directory with template files.

        Raises:
            FileExistsError: If the patch already exists
        """
        kind = PatchKind(kind)
        directory = self.patch_dir(name)
        if directory.exists():
            raise FileExistsError(f"Patch '{name}' already exists at {directory}")

        target_files: list[str] = []
        assets: list[AssetOperation] = []
        if kind == PatchKind.ASSETS:
            assets = [AssetOperation(src="example.txt", dest="extras/example.txt", type=AssetType.COPY)]
        else:
            target_files = [f"{self.config.bundle_dir}/{self.config.bundle_prefix}*{self.config.bundle_suffix}"]

        record = PatchRecord(
            name=name,
            description=SCAFFOLD_DESCRIPTION,
            issue="",
            kind=kind,
            target_files=target_files,
            assets=assets,
        )
        save_patch_record(directory, record)

        if kind == PatchKind.PROGRAMMABLE:
            (directory / PROGRAM_FILE).write_text(PROGRAM_TEMPLATE)
        elif kind == PatchKind.HUNKS:
            (directory / HUNKS_FILE).write_text(HUNKS_TEMPLATE)
        else:
            (directory / ASSETS_DIR).mkdir()
            (directory / ASSETS_DIR / "example.txt").write_text("")
        return directory

    def unresolve_patch(self, name: str) -> PatchRecord:
        """
        Clear a patch's resolved marker so it is checked again.

        Raises:
            MetadataError: If the patch record cannot be read
        """
        directory = self.patch_dir(name)
        record = load_patch_record(directory)
        if record.resolved_at is None:
            raise MetadataError(f"Patch '{name}' is not resolved")
        record.clear_resolved()
        save_patch_record(directory, record)
        return record
