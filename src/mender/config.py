"""Configuration loading for the mender pipelines."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .models.responses import DEFAULT_BASE_URL

DEFAULT_CONFIG_NAME = "mender.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "target": {
        "root": ".",
        "test_command": "pytest -q",
        "coverage_command": "pytest -q --cov --cov-report=term-missing",
        "coverage_threshold": 100,
        "command_timeout": None,
    },
    "retry": {
        "test_max_attempts": 2,
        "coverage_max_attempts": 1,
    },
    "fanout": {
        "max_workers": 4,
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 120,
        "max_attempts": 3,
        "retry_delay": 0.5,
        "base_url": DEFAULT_BASE_URL,
    },
    "paths": {
        "logs": ".mender/logs",
    },
}

# Environment variables recognised on top of the YAML file.
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "TARGET_FOLDER": ("target", "root"),
    "TEST_SCRIPT": ("target", "test_command"),
    "COVERAGE_SCRIPT": ("target", "coverage_command"),
    "COVERAGE_THRESHOLD": ("target", "coverage_threshold"),
    "MENDER_MODEL": ("models", "default"),
}


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


@dataclass(slots=True, frozen=True)
class ModelSettings:
    """Options used to construct the LLM client."""

    name: str = "gpt-5-mini"
    timeout: float = 120.0
    max_attempts: int = 3
    retry_delay: float = 0.5
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MenderConfig:
    """Resolved runtime configuration for one pipeline invocation."""

    target_root: Path
    test_command: str
    coverage_command: str
    coverage_threshold: float = 100.0
    command_timeout: Optional[float] = None
    test_max_attempts: int = 2
    coverage_max_attempts: int = 1
    max_workers: int = 4
    logs_root: Optional[Path] = None
    models: ModelSettings = ModelSettings()


def default_config_data() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def load_config_data(config_path: Optional[Path]) -> Dict[str, Any]:
    """Load YAML configuration from disk and merge it over the defaults.

    A missing file is only an error when ``config_path`` was given explicitly
    and does not exist; ``None`` yields the defaults.
    """
    data = default_config_data()
    if config_path is None:
        return data
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(loaded, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return _merge(data, loaded)


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Overlay recognised environment variables onto ``data`` in place."""
    env = os.environ if environ is None else environ
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value is None or not value.strip():
            continue
        data.setdefault(section, {})[key] = value.strip()
    return data


def build_config(data: Mapping[str, Any], *, base_dir: Optional[Path] = None) -> MenderConfig:
    """Validate ``data`` and return a ``MenderConfig``.

    Relative paths are resolved against ``base_dir`` (the config file's
    directory), defaulting to the current working directory.
    """
    anchor = (base_dir or Path.cwd()).resolve()
    target = _section(data, "target")
    retry = _section(data, "retry")
    fanout = _section(data, "fanout")
    models = _section(data, "models")
    paths = _section(data, "paths")

    root = _resolve_path(_required_str(target, "root", "target"), anchor)
    test_command = _required_str(target, "test_command", "target")
    coverage_command = _required_str(target, "coverage_command", "target")

    threshold = _as_float(target.get("coverage_threshold", 100), "target.coverage_threshold")
    if not 0 <= threshold <= 100:
        raise ConfigError(f"target.coverage_threshold must be between 0 and 100, got {threshold:g}")

    timeout_value = target.get("command_timeout")
    command_timeout = None
    if timeout_value not in (None, ""):
        command_timeout = _as_float(timeout_value, "target.command_timeout")
        if command_timeout <= 0:
            raise ConfigError("target.command_timeout must be positive")

    logs_value = paths.get("logs")
    logs_root = None
    if isinstance(logs_value, str) and logs_value.strip():
        logs_root = _resolve_path(logs_value.strip(), root)

    api_key = models.get("api_key")
    model_settings = ModelSettings(
        name=str(models.get("default") or "gpt-5-mini"),
        timeout=_as_float(models.get("timeout", 120), "models.timeout"),
        max_attempts=_positive_int(models.get("max_attempts", 3), "models.max_attempts"),
        retry_delay=_as_float(models.get("retry_delay", 0.5), "models.retry_delay"),
        base_url=str(models.get("base_url") or DEFAULT_BASE_URL),
        api_key=api_key.strip() if isinstance(api_key, str) and api_key.strip() else None,
    )

    return MenderConfig(
        target_root=root,
        test_command=test_command,
        coverage_command=coverage_command,
        coverage_threshold=threshold,
        command_timeout=command_timeout,
        test_max_attempts=_positive_int(retry.get("test_max_attempts", 2), "retry.test_max_attempts"),
        coverage_max_attempts=_positive_int(
            retry.get("coverage_max_attempts", 1), "retry.coverage_max_attempts"
        ),
        max_workers=_positive_int(fanout.get("max_workers", 4), "fanout.max_workers"),
        logs_root=logs_root,
        models=model_settings,
    )


def load_config(
    config_path: Optional[Path] = None,
    *,
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
    environ: Mapping[str, str] | None = None,
) -> MenderConfig:
    """Load defaults, the YAML file, environment variables and ``overrides``, in that order."""
    data = load_config_data(config_path)
    apply_env_overrides(data, environ)
    if overrides:
        cleaned = {
            section: {key: value for key, value in values.items() if value is not None}
            for section, values in overrides.items()
        }
        data = _merge(data, cleaned)
    base_dir = config_path.resolve().parent if config_path is not None else None
    return build_config(data, base_dir=base_dir)


def _merge(base: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    return value


def _required_str(section: Mapping[str, Any], key: str, section_name: str) -> str:
    value = section.get(key)
    if value is None or not str(value).strip():
        raise ConfigError(f"{section_name}.{key} must be set.")
    return str(value).strip()


def _resolve_path(value: str, anchor: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = anchor / path
    return path.resolve()


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"{name} must be a number, got {value!r}") from error


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}") from error
    if number < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return number


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ENV_OVERRIDES",
    "MenderConfig",
    "ModelSettings",
    "apply_env_overrides",
    "build_config",
    "default_config_data",
    "load_config",
    "load_config_data",
]
