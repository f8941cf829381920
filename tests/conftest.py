"""
Pytest fixtures for patchkeeper tests.
"""

import json
import os
from pathlib import Path

import pytest
import yaml

from patchkeeper.core.config import PatcherConfig
from patchkeeper.core.manager import PatchManager

BUNDLE_NAME = "gateway-cli-abc123.js"

BUNDLE_CONTENT = """\
//#region src/cron/timer.ts
async function onTimer(state) {
\tif (x) return;
\tawait runDueJobs(state);
}
//#endregion
"""


@pytest.fixture(autouse=True)
def _clean_env():
    """Keep PATCHKEEPER_* and GitHub token variables from leaking between tests."""
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("PATCHKEEPER_") or key in ("GITHUB_TOKEN", "GH_TOKEN"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def install_dir(tmp_path):
    """A fake install root with a version manifest and one bundle."""
    root = tmp_path / "openclaw"
    (root / "dist").mkdir(parents=True)
    (root / "package.json").write_text(json.dumps({"name": "openclaw", "version": "2.6.1"}))
    (root / "dist" / BUNDLE_NAME).write_text(BUNDLE_CONTENT)
    return root


@pytest.fixture
def bundle_file(install_dir) -> Path:
    return install_dir / "dist" / BUNDLE_NAME


@pytest.fixture
def patches_dir(tmp_path):
    path = tmp_path / "patches"
    path.mkdir()
    return path


@pytest.fixture
def config(install_dir, patches_dir):
    return PatcherConfig(install_dir=install_dir, patches_dir=patches_dir)


@pytest.fixture
def manager(config):
    return PatchManager(config)


@pytest.fixture
def make_patch(patches_dir):
    """
    Factory writing a patch directory.

    Usage:
        make_patch("fix", kind="hunks", hunks="=== BEFORE ===...", min_version="2.6.0")
    """

    def _make(name: str, *, hunks: str | None = None, program: str | None = None, **fields):
        directory = patches_dir / name
        directory.mkdir()
        record = {
            "name": name,
            "description": f"Test patch {name}",
            "enabled": True,
            "kind": "hunks" if hunks is not None else "programmable",
            "target_files": ["dist/gateway-cli-*.js"],
        }
        record.update(fields)
        (directory / "patch.yaml").write_text(yaml.safe_dump(record, sort_keys=False))
        if hunks is not None:
            (directory / "hunks.txt").write_text(hunks)
        if program is not None:
            (directory / "patch.py").write_text(program)
        return directory

    return _make


@pytest.fixture
def timer_hunks():
    """One hunk rewriting the bare running guard in the sample bundle."""
    return (
        "=== BEFORE ===\n"
        "if (x) return;\n"
        "=== AFTER ===\n"
        "if (x) { armTimer(); return; }\n"
        "=== END ===\n"
    )
