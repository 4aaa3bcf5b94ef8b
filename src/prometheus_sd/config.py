"""Configuration loading and merging for prometheus-sd."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .errors import ConfigError


DEFAULT_REDIS_URL = "redis://localhost:6379"
DEFAULT_MAX_TIMEOUT = 8 * 60 * 60  # 8 hours

ENV_REDIS_URL = "PROMETHEUS_SD_REDIS_URL"
ENV_REDIS_TIMEOUT = "PROMETHEUS_SD_REDIS_TIMEOUT"
ENV_LOG_LEVEL = "PROMETHEUS_SD_LOG_LEVEL"


@dataclass
class SDConfig:
    # Backend connection
    redis_url: str = DEFAULT_REDIS_URL
    # Give-up horizon (seconds) for the initial connection attempts
    max_timeout: int = DEFAULT_MAX_TIMEOUT
    # Socket connect timeout (seconds) for a single attempt
    connect_timeout: int = 5 * 60

    # Registry key layout
    namespace: str = "prometheus_sd"
    service_set_key: str = "prometheus_sd_service_keys"

    # Defaults for `register`
    metrics_path: str = "/metrics"

    # Output path for `discover`
    output: Optional[str] = None

    log_level: str = "WARNING"


def load_config(path: str | Path) -> SDConfig:
    """Load an SDConfig from a YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    valid_fields = {f.name for f in fields(SDConfig)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return SDConfig(**filtered)


def apply_env(config: SDConfig, environ: Optional[Mapping[str, str]] = None) -> SDConfig:
    """Overlay PROMETHEUS_SD_* environment variables onto *config*."""
    if environ is None:
        environ = os.environ
    if environ.get(ENV_REDIS_URL):
        config.redis_url = environ[ENV_REDIS_URL]
    if environ.get(ENV_REDIS_TIMEOUT):
        try:
            config.max_timeout = int(environ[ENV_REDIS_TIMEOUT])
        except ValueError:
            raise ConfigError(
                f"{ENV_REDIS_TIMEOUT} must be a number of seconds, "
                f"got {environ[ENV_REDIS_TIMEOUT]!r}"
            ) from None
    if environ.get(ENV_LOG_LEVEL):
        config.log_level = environ[ENV_LOG_LEVEL]
    return config


def merge_cli_args(config: SDConfig, args) -> SDConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(SDConfig):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(config, f.name, cli_val)
    return config


_INT_FIELDS = ("max_timeout", "connect_timeout")
_STR_FIELDS = ("redis_url", "namespace", "service_set_key", "metrics_path", "log_level")


def _check_types(config: SDConfig) -> None:
    # YAML values arrive untyped; bool is an int subclass and is rejected too.
    for name in _INT_FIELDS:
        value = getattr(config, name)
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(f"{name} must be a number of seconds, got {value!r}")
    for name in _STR_FIELDS:
        value = getattr(config, name)
        if not isinstance(value, str):
            raise ConfigError(f"{name} must be a string, got {value!r}")
    if config.output is not None and not isinstance(config.output, str):
        raise ConfigError(f"output must be a path, got {config.output!r}")


def validate(config: SDConfig) -> SDConfig:
    _check_types(config)
    if config.max_timeout < 0:
        raise ConfigError(f"max_timeout must not be negative, got {config.max_timeout}")
    if config.connect_timeout <= 0:
        raise ConfigError(f"connect_timeout must be positive, got {config.connect_timeout}")
    if not config.namespace:
        raise ConfigError("namespace must not be empty")
    if not config.service_set_key:
        raise ConfigError("service_set_key must not be empty")
    if not isinstance(logging.getLevelName(config.log_level.upper()), int):
        raise ConfigError(f"Unknown log level: {config.log_level!r}")
    return config


def build_config(args=None, environ: Optional[Mapping[str, str]] = None) -> SDConfig:
    """Build an SDConfig from defaults, a config file, the environment and CLI args."""
    config_path = getattr(args, "config", None)
    config = load_config(config_path) if config_path else SDConfig()
    apply_env(config, environ)
    if args is not None:
        merge_cli_args(config, args)
    return validate(config)
