"""
Programmable edits: patch logic supplied as code.

A programmable edit is any object exposing three functions over
(file_content, file_path):

    check(content, path) -> bool        # the defect is present
    is_resolved(content, path) -> bool  # upstream fixed it independently
    apply(content, path) -> str         # the patched content

Implementations are either registered in-process by patch name or loaded
from the patch directory's patch.py, freshly on every use.
"""

from __future__ import annotations

import importlib.util
import logging
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

from patchkeeper.core.errors import TransformError
from patchkeeper.models.patch import PROGRAM_FILE

logger = logging.getLogger(__name__)

REQUIRED_FUNCTIONS = ("check", "is_resolved", "apply")


@runtime_checkable
class ProgrammableEdit(Protocol):
    def check(self, content: str, path: str) -> bool: ...

    def is_resolved(self, content: str, path: str) -> bool: ...

    def apply(self, content: str, path: str) -> str: ...


_registry: dict[str, ProgrammableEdit] = {}


def register_edit(name: str, edit: ProgrammableEdit) -> None:
    """Register an in-process implementation for the named patch."""
    _registry[name] = edit


def unregister_edit(name: str) -> None:
    _registry.pop(name, None)


def load_edit_module(path: Path) -> ProgrammableEdit:
    """
    Import a patch.py file as a fresh module.

    Raises:
        TransformError: If the file is missing, fails to import, or lacks
                        one of check/is_resolved/apply
    """
    if not path.exists():
        raise TransformError(f"Could not load {PROGRAM_FILE}: {path} does not exist")

    module_name = f"patchkeeper_edit_{path.parent.name.replace('-', '_')}_{uuid.uuid4().hex[:8]}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise TransformError(f"Could not load {PROGRAM_FILE}: {path}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise TransformError(f"Could not load {PROGRAM_FILE}: {e}") from e

    missing = [fn for fn in REQUIRED_FUNCTIONS if not callable(getattr(module, fn, None))]
    if missing:
        raise TransformError(f"{PROGRAM_FILE} is missing required function(s): {', '.join(missing)}")
    return module  # type: ignore[return-value]


def get_edit(name: str, patch_dir: Path) -> ProgrammableEdit:
    """Return the registered edit for a patch, or load its patch.py."""
    if name in _registry:
        return _registry[name]
    logger.debug(f"loading {PROGRAM_FILE} for '{name}'")
    return load_edit_module(patch_dir / PROGRAM_FILE)


PROGRAM_TEMPLATE = '''"""
Programmable patch.

Implement check, is_resolved, and apply for your specific fix.
"""


def check(content, path):
    """Return True if the file contains the buggy code that needs patching."""
    return "BUGGY_CODE_MARKER" in content and "FIX_MARKER" not in content


def is_resolved(content, path):
    """Return True if upstream fixed the issue and this patch is no longer needed."""
    return "UPSTREAM_FIX_MARKER" in content


def apply(content, path):
    """Return the patched file content."""
    return content.replace("BUGGY_CODE_MARKER", "FIX_MARKER", 1)
'''
