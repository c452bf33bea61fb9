"""
Engine configuration loaded from config/wayfinder.toml.

Design Principles:
1. NO hardcoding - catalog location, log level and question phrasing
   all come from TOML
2. Frozen msgspec Struct: configuration never changes after load
3. A missing or unreadable file falls back to defaults with a warning

Resolution order: explicit path -> $WAYFINDER_CONFIG -> bundled TOML -> Defaults
"""
import os
import tomllib
import warnings
from pathlib import Path
from typing import Optional, Union

import msgspec


CONFIG_ENV_VAR = "WAYFINDER_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "wayfinder.toml"


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Configuration for catalog loading and report shaping."""
    catalog_path: str = ""                   # Catalog JSON, relative to the config file
    log_level: str = "INFO"                  # Root log level for the CLI
    fact_question_template: str = "What is your {field}?"
    status_question_template: str = "Are you receiving, or have you completed, {service}?"
    include_hidden: bool = True              # Keep HIDDEN_GATED nodes in report.services


def _resolve_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_engine_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load engine configuration.

    Reads the [engine] table. A relative catalog_path is resolved
    against the directory holding the config file.

    Returns:
        EngineConfig with settings (defaults if the file can't be read)
    """
    config_path = _resolve_path(path)
    try:
        with open(config_path, "rb") as f:
            config = tomllib.load(f)
        engine_cfg = dict(config.get("engine", {}))
        catalog_path = engine_cfg.get("catalog_path")
        if catalog_path and not Path(catalog_path).is_absolute():
            engine_cfg["catalog_path"] = str(config_path.parent / catalog_path)
        return msgspec.convert(engine_cfg, type=EngineConfig)
    except (OSError, tomllib.TOMLDecodeError, msgspec.ValidationError) as e:
        warnings.warn(f"Failed to load engine config from {config_path}: {e}")
        return EngineConfig()
