"""
Runtime configuration for the exporter.

Values are merged from, in order of precedence: command line flags,
environment variables, an optional YAML file, and built-in defaults.
"""

import argparse
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

import yaml

API_KEY_ENV = "UPTIMEROBOT_API_KEY"
CONFIG_FILE_ENV = "UPTIMEROBOT_EXPORTER_CONFIG"


class ConfigError(ValueError):
    """Raised when the exporter cannot start with the given configuration."""


@dataclass
class ExporterConfig:
    """Runtime configuration for the exporter service."""

    api_key: str = ""
    address: str = "0.0.0.0"
    port: int = 9705
    interval: int = 30
    log_level: str = "info"
    empty_confirmations: int = 2
    identity_key: str = "friendly_name"
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ConfigError(f"missing Uptime Robot API key, use --api-key or {API_KEY_ENV}")
        try:
            self.port = int(self.port)
            self.interval = int(self.interval)
            self.empty_confirmations = int(self.empty_confirmations)
            self.timeout = float(self.timeout)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid numeric setting: {e}") from e
        if not 0 < self.port < 65536:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")
        if self.interval <= 0:
            raise ConfigError(f"interval must be positive, got {self.interval}")
        if self.empty_confirmations < 1:
            raise ConfigError(f"empty_confirmations must be at least 1, got {self.empty_confirmations}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.identity_key not in ("friendly_name", "id"):
            raise ConfigError(f"identity_key must be 'friendly_name' or 'id', got {self.identity_key!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uptimerobot-exporter",
        description="Export Uptime Robot monitors as Prometheus metrics",
    )
    # Defaults stay None so unset flags do not override other sources.
    parser.add_argument("--api-key", dest="api_key", help=f"Uptime Robot API key (or {API_KEY_ENV})")
    parser.add_argument("--ip", dest="address", help="IP on which the Prometheus server will be bound (default 0.0.0.0)")
    parser.add_argument("-p", "--port", dest="port", type=int, help="Port used by the Prometheus server (default 9705)")
    parser.add_argument("--interval", "--inteval", dest="interval", type=int,
                        help="Uptime Robot API scrape interval, in seconds (default 30)")
    parser.add_argument("--log-level", dest="log_level", help="Log level (default info)")
    parser.add_argument("--config", dest="config", help=f"YAML configuration file (or {CONFIG_FILE_ENV})")
    parser.add_argument("--empty-confirmations", dest="empty_confirmations", type=int,
                        help="Consecutive empty monitor lists required before removing all monitors (default 2)")
    parser.add_argument("--identity-key", dest="identity_key", choices=["friendly_name", "id"],
                        help="Field used to match monitors between polls (default friendly_name)")
    parser.add_argument("--timeout", dest="timeout", type=float, help="API request timeout, in seconds (default 30)")
    return parser


def load_config_file(path: str) -> Dict[str, Any]:
    """Load settings from a YAML file."""
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to load config from {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    known = {f.name for f in fields(ExporterConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown settings in {path}: {', '.join(unknown)}")
    return data


def load_config(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    settings: Dict[str, Any] = {}
    config_path = args.config or environ.get(CONFIG_FILE_ENV)
    if config_path:
        settings.update(load_config_file(config_path))

    if environ.get(API_KEY_ENV):
        settings["api_key"] = environ[API_KEY_ENV]

    for name, value in vars(args).items():
        if name != "config" and value not in (None, ""):
            settings[name] = value

    return ExporterConfig(**settings)
