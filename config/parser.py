"""
Configuration parser for the MTR exporter.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from models import Host


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ExporterConfig:
    """
    Exporter configuration parser and validator.

    The parsed values are fixed at construction time; every property returns
    an immutable view, so one instance can be shared by all threads.
    """

    REQUIRED_FIELDS = {
        'hosts': list,
    }

    OPTIONAL_FIELDS = {
        'args': list,
        'cycles': int,
        'mtr_binary': str,
        'timeout': (int, float),
        'interval': (int, float),
    }

    def __init__(self, config_dict: Dict[str, Any]):
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a mapping")
        self._config = dict(config_dict)
        self._validate()
        self._arguments = tuple(config_dict.get('args') or ())
        self._hosts = self._parse_hosts(config_dict['hosts'])

    def _validate(self):
        """Validate that all required fields are present and have correct types."""
        for field, expected_type in self.REQUIRED_FIELDS.items():
            value = self._config.get(field)
            if value is None:
                raise ConfigurationError(f"Missing required field: {field}")

            if not isinstance(value, expected_type):
                raise ConfigurationError(
                    f"Field {field} has incorrect type. "
                    f"Expected {expected_type}, got {type(value)}"
                )

        for field, expected_type in self.OPTIONAL_FIELDS.items():
            value = self._config.get(field)
            # bool is an int subclass, but never a valid count or duration
            if value is not None and (isinstance(value, bool) or not isinstance(value, expected_type)):
                raise ConfigurationError(
                    f"Field {field} has incorrect type. "
                    f"Expected {expected_type}, got {type(value)}"
                )

        if not self._config['hosts']:
            raise ConfigurationError("Field hosts must list at least one target")

        for arg in self._config.get('args') or ():
            if not isinstance(arg, str):
                raise ConfigurationError(f"Field args must contain strings, got {arg!r}")

        if self.cycles <= 0:
            raise ConfigurationError("Field cycles must be positive")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("Field timeout must be positive")

        if self.interval < 0:
            raise ConfigurationError("Field interval must not be negative")

    @staticmethod
    def _parse_hosts(entries: list) -> Tuple[Host, ...]:
        hosts = []
        seen = set()
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"hosts[{position}] must be a mapping")
            name = entry.get('name')
            if not isinstance(name, str):
                raise ConfigurationError(f"Missing required field: hosts[{position}].name")
            alias = entry.get('alias', name)
            try:
                host = Host(name=name, alias=alias)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid host entry hosts[{position}]: {e}")
            if host.alias in seen:
                raise ConfigurationError(f"Duplicate host alias: {host.alias}")
            seen.add(host.alias)
            hosts.append(host)
        return tuple(hosts)

    @property
    def arguments(self) -> Tuple[str, ...]:
        return self._arguments

    @property
    def hosts(self) -> Tuple[Host, ...]:
        return self._hosts

    @property
    def cycles(self) -> int:
        value = self._config.get('cycles')
        return 1 if value is None else value

    @property
    def mtr_binary(self) -> str:
        return self._config.get('mtr_binary') or 'mtr'

    @property
    def timeout(self) -> Optional[float]:
        return self._config.get('timeout', 60)

    @property
    def interval(self) -> float:
        return self._config.get('interval') or 0

    @classmethod
    def from_file(cls, config_path: str) -> 'ExporterConfig':
        """Load configuration from YAML file."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(path, 'r') as f:
                config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}")

        if config_dict is None:
            raise ConfigurationError("Configuration file is empty")

        return cls(config_dict)
