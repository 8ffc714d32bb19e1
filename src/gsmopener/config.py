"""
GSM Opener configuration.

Lives in ``<home>/config.yaml``; every field has a default so a fresh
home works without one.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import OPENER_HOME

logger = logging.getLogger("gsmopener.config")

CONFIG_FILENAME = "config.yaml"


class OpenerConfig(BaseModel):
    """Persistent configuration for GSM Opener."""

    store_file: str = "store.json"
    backup_dir: str = "backups"
    log_level: str = "WARNING"
    default_device_type: str = "Connect4v"
    default_password: str = Field(default="1234", pattern=r"^\d{4}$")
    pretty_store: bool = False


def resolve_home(home: Optional[Path] = None) -> Path:
    """Home directory: explicit path, else $GSMOPENER_HOME, else ~/.gsmopener."""
    return Path(home or OPENER_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> OpenerConfig:
    """Load configuration from disk.

    Returns:
        OpenerConfig loaded from config.yaml, or defaults.
    """
    config_file = resolve_home(home) / CONFIG_FILENAME
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            return OpenerConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config: %s, using defaults", exc)
    return OpenerConfig()


def save_config(config: OpenerConfig, home: Optional[Path] = None) -> Path:
    """Write configuration to ``<home>/config.yaml``."""
    home_path = resolve_home(home)
    home_path.mkdir(parents=True, exist_ok=True)
    config_file = home_path / CONFIG_FILENAME
    config_file.write_text(yaml.dump(config.model_dump(mode="json"), default_flow_style=False))
    return config_file
