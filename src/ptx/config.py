"""Configuration file handling for the ``ptx`` command line."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PatchingError

DEFAULT_CONFIG_NAME = "ptx.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "installation": {
        "home": ".",
        "version": "1.0.0",
    },
    "patching": {
        "override_all": False,
        "backup_configuration": True,
    },
    "logging": {
        "level": "INFO",
        "telemetry": False,
    },
}


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class InstallationConfig(_Section):
    """Where the distribution lives and which version it ships as."""

    home: str = "."
    version: str = "1.0.0"


class PatchingConfig(_Section):
    override_all: bool = False
    backup_configuration: bool = True


class LoggingConfig(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    telemetry: bool = False


class PtxConfig(_Section):
    """Validated contents of ``ptx.yaml``."""

    installation: InstallationConfig = Field(default_factory=InstallationConfig)
    patching: PatchingConfig = Field(default_factory=PatchingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    source: Path | None = Field(default=None, exclude=True)

    def resolve_home(self) -> Path:
        """Installation home, relative paths resolved against the config file."""
        home = Path(self.installation.home)
        if not home.is_absolute() and self.source is not None:
            home = self.source.parent / home
        return home.resolve()


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> PtxConfig:
    """Load ``config_path``; a missing file yields the defaults."""
    if not config_path.exists():
        return PtxConfig(source=None)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise PatchingError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise PatchingError("Configuration must be a mapping at the top level.")
    try:
        config = PtxConfig.model_validate(data)
    except ValidationError as error:
        raise PatchingError(
            f"Invalid configuration in {config_path}",
            details={"errors": error.errors(include_url=False)},
        ) from error
    config.source = config_path.resolve()
    return config


def configure_logging(config: LoggingConfig, *, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("ptx").setLevel(level)
    telemetry = logging.getLogger("ptx.telemetry")
    telemetry.setLevel(logging.INFO if config.telemetry else logging.WARNING)
