"""
Configuration Loader - Bridge Between JSON Config and AppSettings
================================================================
Loads configuration from a JSON file and maps it onto AppSettings.
Values of the form ``"${VAR}"`` are resolved from the environment.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from .settings import AppSettings
from ...core.logger import get_logger

logger = get_logger(__name__)

_SECTIONS = ("logging", "scheduler", "cache", "integrity", "zscore")


def resolve_env_vars(data: Any) -> Any:
    """Recursively replace ``"${VAR}"`` strings with environment values."""
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [resolve_env_vars(i) for i in data]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        var_name = data[2:-1]
        return os.getenv(var_name, "")
    return data


def settings_from_dict(config_data: Dict[str, Any]) -> AppSettings:
    """
    Build AppSettings from a plain dict.

    Sections present in ``config_data`` override the environment/default
    values field by field; unknown keys are ignored.
    """
    resolved = resolve_env_vars(config_data)
    base = AppSettings()

    overrides: Dict[str, Any] = {}
    for section in _SECTIONS:
        section_data = resolved.get(section)
        if not isinstance(section_data, dict):
            continue
        current = getattr(base, section).model_dump()
        current.update({k: v for k, v in section_data.items() if k in current})
        overrides[section] = type(getattr(base, section))(**current)

    for key in ("app_name", "version", "debug", "config_dir"):
        if key in resolved:
            overrides[key] = resolved[key]

    return base.model_copy(update=overrides)


def load_app_settings_from_json(config_path: str = "config/config.json") -> AppSettings:
    """
    Load AppSettings from JSON configuration file.

    Falls back to default AppSettings when the file is missing or unreadable;
    invalid values inside a readable file are a configuration error and raise.

    Args:
        config_path: Path to config.json file

    Returns:
        Configured AppSettings instance
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("config_loader.load_failed", {
            "config_path": config_path,
            "error": str(e),
            "fallback": "defaults"
        })
        return AppSettings()

    try:
        settings = settings_from_dict(config_data)
    except ValidationError as e:
        logger.error("config_loader.invalid_config", {
            "config_path": config_path,
            "error": str(e)
        })
        raise

    logger.info("config_loader.loaded", {"config_path": config_path})
    return settings


def get_settings_from_working_directory() -> AppSettings:
    """
    Load settings from config.json relative to the current working directory.

    Returns:
        Configured AppSettings instance
    """
    possible_paths = [
        "config/config.json",
        "../config/config.json",
    ]

    for config_path in possible_paths:
        if Path(config_path).exists():
            return load_app_settings_from_json(config_path)

    logger.info("config_loader.no_config_file", {"searched": possible_paths})
    return AppSettings()
