"""
Path utilities for patchkeeper.
"""

from pathlib import Path


def get_patchkeeper_dir() -> Path:
    """Get the ~/.patchkeeper home directory."""
    return Path.home() / ".patchkeeper"


def get_default_config_path() -> Path:
    """Get the default config file path."""
    return get_patchkeeper_dir() / "config.yaml"


def get_default_patches_dir() -> Path:
    """Get the default patches directory."""
    return get_patchkeeper_dir() / "patches"
