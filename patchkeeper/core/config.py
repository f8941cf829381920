"""
Patcher configuration.

Loaded from ~/.patchkeeper/config.yaml (or an explicit path), with
PATCHKEEPER_<FIELD> environment variables taking precedence:

    install_dir: /opt/homebrew/lib/node_modules/openclaw
    patches_dir: ~/.patchkeeper/patches
    backup_before_patch: true
    debug: false
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from patchkeeper.core.errors import ConfigError
from patchkeeper.utils.paths import get_default_config_path, get_default_patches_dir

logger = logging.getLogger(__name__)

ENV_PREFIX = "PATCHKEEPER_"
STATE_FILE = ".patcher-state.json"


class PatcherConfig(BaseModel):
    """Settings for one install tree and its patches directory."""

    install_dir: Path = Field(
        default=Path("/opt/homebrew/lib/node_modules/openclaw"),
        description="Root of the installation being patched",
    )
    patches_dir: Path = Field(
        default_factory=get_default_patches_dir,
        description="Directory holding one subdirectory per patch",
    )
    backup_before_patch: bool = Field(
        default=True, description="Write <file>.bak before modifying a target file"
    )
    debug: bool = False

    manifest_file: str = Field(
        default="package.json", description="Version manifest, relative to install_dir"
    )
    bundle_dir: str = Field(default="dist", description="Bundle directory, relative to install_dir")
    bundle_prefix: str = "gateway-cli-"
    bundle_suffix: str = ".js"

    github_repo: str = Field(default="openclaw/openclaw", description="owner/name for PR imports")

    @field_validator("install_dir", "patches_dir", mode="before")
    @classmethod
    def _expand_user(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        return value

    @property
    def state_file(self) -> Path:
        return self.patches_dir / STATE_FILE

    @property
    def manifest_path(self) -> Path:
        return self.install_dir / self.manifest_file

    @property
    def bundle_path(self) -> Path:
        return self.install_dir / self.bundle_dir


def _env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for name in PatcherConfig.model_fields:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            overrides[name] = value
    return overrides


def _friendly_validation_errors(exc: ValidationError, path: Path | None) -> ConfigError:
    issues = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error["loc"])
        issues.append(f"{loc}: {error['msg']}")
    return ConfigError(issues, str(path) if path else None)


def load_config(path: Path | None = None, **overrides: Any) -> PatcherConfig:
    """
    Load patcher configuration.

    Precedence: explicit overrides > environment > config file > defaults.

    Args:
        path: Config file (default: ~/.patchkeeper/config.yaml); a missing
              file is not an error
        **overrides: Values that win over everything else (None is ignored)

    Raises:
        ConfigError: If the file is not valid YAML or a value is invalid
    """
    config_path = path or get_default_config_path()
    data: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError([f"could not parse YAML: {e}"], str(config_path)) from e
        if not isinstance(loaded, dict):
            raise ConfigError(["top level must be a mapping"], str(config_path))
        data.update(loaded)
    else:
        logger.debug(f"no config file at {config_path}, using defaults")

    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return PatcherConfig(**data)
    except ValidationError as e:
        raise _friendly_validation_errors(e, config_path) from e


def save_config(config: PatcherConfig, path: Path | None = None) -> Path:
    """Write configuration to YAML."""
    config_path = path or get_default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
    return config_path
