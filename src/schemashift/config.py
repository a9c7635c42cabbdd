"""Configuration management for schemashift."""

import copy
import logging
import os
import shutil
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .lock import lock_path_for
from .utils import ensure_dir, expand_path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_TEMPLATE_PATH = Path(__file__).with_name("config.toml")
DEFAULT_CONFIG_FILENAME = "schemashift.toml"
CONFIG_ENV_VAR = "SCHEMASHIFT_CONFIG"
CURRENT_CONFIG_SCHEMA_VERSION = 1

PATH_KEYS = ("migrations_dir", "state_file", "schema_file")


def _load_default_template() -> dict[str, Any]:
    """Load the packaged default config template."""
    with open(DEFAULT_CONFIG_TEMPLATE_PATH, "rb") as f:
        return tomllib.load(f)


def _merge_config_data(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge config dictionaries recursively."""
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_config_data(base_value, value)
        else:
            merged[key] = value
    return merged


def _copy_default_config(config_path: Path) -> None:
    """Copy the packaged template to ``config_path``."""
    ensure_dir(config_path.parent)
    shutil.copyfile(DEFAULT_CONFIG_TEMPLATE_PATH, config_path)


def _resolve_paths(data: dict[str, Any], base: Path) -> dict[str, Any]:
    """Expand path values, resolving relative ones against ``base``."""
    resolved = copy.deepcopy(data)
    paths = resolved.get("project", {}).get("paths", {})
    for key in PATH_KEYS:
        value = paths.get(key)
        if isinstance(value, str):
            paths[key] = expand_path(value, base)
    return resolved


class ProjectPathsConfig(BaseModel):
    """Project path configuration."""

    migrations_dir: Path
    state_file: Path
    schema_file: Path


class ProjectRunnerConfig(BaseModel):
    """Runner behaviour configuration."""

    lock_timeout: float = Field(default=0.0, ge=0, description="Seconds to wait for a held lock")
    dump_schema: bool = True


class ProjectConfig(BaseModel):
    """Project configuration section."""

    paths: ProjectPathsConfig
    runner: ProjectRunnerConfig = Field(default_factory=ProjectRunnerConfig)


class MetaConfig(BaseModel):
    """Configuration metadata section."""

    schema_version: int = Field(default=CURRENT_CONFIG_SCHEMA_VERSION, ge=1, le=CURRENT_CONFIG_SCHEMA_VERSION)


class Config(BaseModel):
    """Configuration for schemashift."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    meta: MetaConfig = Field(default_factory=MetaConfig)
    project: ProjectConfig

    @property
    def migrations_dir(self) -> Path:
        """Directory of migration files."""
        return self.project.paths.migrations_dir

    @property
    def state_file(self) -> Path:
        """Path to the TinyDB store."""
        return self.project.paths.state_file

    @property
    def schema_file(self) -> Path:
        """Path to the TOML schema dump."""
        return self.project.paths.schema_file

    @property
    def lock_file(self) -> Path:
        """Path to the migration lock file."""
        return lock_path_for(self.state_file)

    @property
    def lock_timeout(self) -> float:
        """Seconds to wait for a held lock."""
        return self.project.runner.lock_timeout

    @property
    def dump_schema(self) -> bool:
        """Whether the schema file is rewritten after every change."""
        return self.project.runner.dump_schema

    @property
    def schema_version(self) -> int:
        """Config schema version."""
        return self.meta.schema_version


def get_config_path() -> Path:
    """
    Get configuration file path.

    Priority:
    1. SCHEMASHIFT_CONFIG environment variable
    2. Default: ./schemashift.toml

    Returns:
        Path to config file
    """
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return expand_path(env_config)

    return Path.cwd() / DEFAULT_CONFIG_FILENAME


def create_default_config(base: Path | None = None) -> Config:
    """Create default configuration from the packaged template."""
    return Config.model_validate(_resolve_paths(_load_default_template(), base or Path.cwd()))


def init_config(config_path: Path) -> bool:
    """
    Write the default config template to ``config_path`` if it is missing.

    Returns:
        True if the file was created, False if it already existed
    """
    if config_path.exists():
        return False
    _copy_default_config(config_path)
    return True


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from TOML file using Pydantic validation.

    Missing keys fall back to the packaged template. When the file does not
    exist the template alone is used, relative to the current directory.

    Args:
        config_path: Optional custom config path

    Returns:
        Config instance with validated values

    Raises:
        ValueError: If the file is not valid TOML or fails validation, e.g. a
            ``schema_version`` newer than this release understands
    """
    if config_path is None:
        config_path = get_config_path()

    defaults = _load_default_template()

    if not config_path.exists():
        logger.debug(f"No config at {config_path}, using defaults")
        return Config.model_validate(_resolve_paths(defaults, Path.cwd()))

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    merged_values = _merge_config_data(defaults, data)
    return Config.model_validate(_resolve_paths(merged_values, config_path.resolve().parent))
