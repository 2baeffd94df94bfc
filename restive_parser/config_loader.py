"""Config Loader - Loads ParserSettings from YAML.

Handles loading YAML settings files with environment variable substitution.
Keys are the ParserSettings field names; unknown keys are rejected.

Example:

    enable_json_body_patching: true
    body_patch_debug: false
    max_stream_buffer_size: 1048576
    form_param_encoding_strategy: always
    default_headers:
      Authorization: Bearer ${API_TOKEN}
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from restive_parser.errors import RestiveParserError
from restive_parser.models import ParserSettings

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(RestiveParserError):
    """Raised when configuration loading fails."""


def load_settings(config_path: Path) -> ParserSettings:
    """Load parser settings from YAML with ${ENV_VAR} substitution.

    An empty file yields default settings.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ParserSettings.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def _substitute_env_vars(data: Any, key_path: str = "") -> Any:
    """Recursively substitute ${ENV_VAR} patterns in string values.

    *key_path* is the dotted settings key being visited (``default_headers.Authorization``,
    ``items[0]``) and is named in the error when a variable is unset.
    """
    if isinstance(data, str):
        return _substitute_string(data, key_path or "<root>")
    if isinstance(data, dict):
        return {
            key: _substitute_env_vars(value, f"{key_path}.{key}" if key_path else str(key))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_substitute_env_vars(item, f"{key_path}[{i}]") for i, item in enumerate(data)]
    return data


def _substitute_string(value: str, key_path: str) -> str:
    missing = [name for name in _ENV_VAR_PATTERN.findall(value) if name not in os.environ]
    if missing:
        raise ConfigError(
            f"Environment variable '{missing[0]}' is not set (referenced by setting '{key_path}')"
        )
    return _ENV_VAR_PATTERN.sub(lambda match: os.environ[match.group(1)], value)
