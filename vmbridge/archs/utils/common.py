import os
import re
from typing import Any, cast

import yaml


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


YamlValue = dict[str, Any] | list[Any] | str | int | float | bool | None

_TRUTHY = frozenset({"1", "true", "yes"})
_ENV_PATTERN = re.compile(r"\$\{env\.([A-Za-z_][A-Za-z0-9_]*)\}")
_VAR_PATTERN = re.compile(r"\$\{variables\.([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\}")


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment flag; ``1``, ``true`` and ``yes`` (any case) are true."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _safe_load(text: str, path: str | os.PathLike[str]) -> YamlValue:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_yaml_with_vars(path: str | os.PathLike[str]) -> YamlValue:
    """Load a YAML file, substituting placeholders in its raw text.

    Supported placeholders:
        ``${this_file_dir}``: directory containing the YAML file
        ``${env.NAME}``: environment variable (must be set)
        ``${variables.a.b}``: scalar from the file's top-level ``variables`` block

    Raises:
        ConfigError: If the file is missing or invalid, or a placeholder cannot be resolved
    """
    try:
        with open(path, encoding="utf-8") as f:
            config_text = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    base_dir = os.path.dirname(os.path.abspath(path))
    config_text = config_text.replace("${this_file_dir}", base_dir)

    def _replace_env(match: re.Match[str]) -> str:
        env_name = match.group(1)
        if env_name not in os.environ:
            raise ConfigError(f"Environment variable '{env_name}' is not set")
        return os.environ[env_name]

    config_text = _ENV_PATTERN.sub(_replace_env, config_text)

    loaded_config = _safe_load(config_text, path)
    if not isinstance(loaded_config, dict):
        return loaded_config

    yaml_variables = loaded_config.get("variables")
    if yaml_variables is None:
        return loaded_config
    if not isinstance(yaml_variables, dict):
        raise ConfigError("'variables' must be a mapping if provided in YAML")
    yaml_variables = cast(dict[str, Any], yaml_variables)

    def _resolve_var(match: re.Match[str]) -> str:
        current: YamlValue = yaml_variables
        for part in match.group(1).split("."):
            if not isinstance(current, dict) or part not in current:
                raise ConfigError(f"Variable '{match.group(1)}' is not defined in 'variables'")
            current = current[part]
        if isinstance(current, (dict, list)):
            raise ConfigError(
                f"Variable '{match.group(1)}' resolves to a non-scalar value and cannot be embedded in a string",
            )
        return str(current)

    resolved_config = _safe_load(_VAR_PATTERN.sub(_resolve_var, config_text), path)
    if isinstance(resolved_config, dict):
        resolved_config.pop("variables", None)
    return resolved_config
