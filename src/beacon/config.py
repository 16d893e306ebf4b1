"""Configuration loading and merging for beacon."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .exceptions import ConfigurationError


DEFAULT_ETCD_URL = "http://127.0.0.1:2379"
DEFAULT_NAMESPACE = "/services"


@dataclass
class DiscoveryConfig:
    # etcd endpoint; falls back to BEACON_ETCD_URL, then DEFAULT_ETCD_URL
    url: Optional[str] = None

    # Prefix isolating one deployment's registrations from another's
    namespace: Optional[str] = None

    # Per-request timeout (seconds) for store calls
    timeout: float = 5.0

    # How often a register/unregister re-reads after losing a conditional write
    max_conflict_retries: int = 5

    # Pause (seconds) before a dropped watch long-poll is re-issued
    watch_retry_interval: float = 1.0

    # Longest single watch long-poll (seconds); bounds how long cancelling a watch takes
    watch_poll_timeout: float = 30.0

    # Install SIGINT/SIGTERM handlers that unregister before exiting
    install_signal_handlers: bool = True

    @property
    def resolved_url(self) -> str:
        return self.url or os.environ.get("BEACON_ETCD_URL") or DEFAULT_ETCD_URL

    @property
    def resolved_namespace(self) -> str:
        return self.namespace or os.environ.get("BEACON_NAMESPACE") or DEFAULT_NAMESPACE


def load_config(path: str | Path) -> DiscoveryConfig:
    """Load a DiscoveryConfig from a YAML file."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file: {e}", config_path=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}", config_path=str(path)) from e

    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a mapping", config_path=str(path))

    valid_fields = {f.name for f in fields(DiscoveryConfig)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return DiscoveryConfig(**filtered)


def merge_cli_args(config: DiscoveryConfig, args) -> DiscoveryConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(DiscoveryConfig):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(config, f.name, cli_val)
    return config


def config_to_yaml(config: DiscoveryConfig) -> str:
    """Serialize the effective configuration (environment fallbacks applied)."""
    data: dict = {
        "url": config.resolved_url,
        "namespace": config.resolved_namespace,
        "timeout": config.timeout,
        "max_conflict_retries": config.max_conflict_retries,
        "watch_retry_interval": config.watch_retry_interval,
        "watch_poll_timeout": config.watch_poll_timeout,
        "install_signal_handlers": config.install_signal_handlers,
    }
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
