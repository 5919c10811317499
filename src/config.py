"""Driver runtime settings.

Settings control how the driver talks to the hosting cluster and cloud
vendors: worker pool size, polling ceilings and intervals, and the
optimistic-concurrency retry budget. Defaults live here; a YAML file
passed with --settings overrides any subset of them:

    max_workers: 4
    crd_established:
      timeout: 120
      interval: 2
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error."""


def _number(data: dict, key: str, default, convert):
    try:
        return convert(data.get(key, default))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {data.get(key)!r}") from e


@dataclass(frozen=True)
class PollSettings:
    """Ceiling and interval for one bounded polling loop, in seconds."""
    timeout: float
    interval: float

    @classmethod
    def from_dict(cls, data: dict, default: 'PollSettings') -> 'PollSettings':
        if not isinstance(data, dict):
            raise ConfigError(f"poll settings must be a mapping, got {type(data).__name__}")
        timeout = _number(data, 'timeout', default.timeout, float)
        interval = _number(data, 'interval', default.interval, float)
        if timeout <= 0 or interval <= 0:
            raise ConfigError("poll timeout and interval must be positive")
        return cls(timeout=timeout, interval=interval)

    def to_dict(self) -> dict:
        return {'timeout': self.timeout, 'interval': self.interval}


@dataclass(frozen=True)
class DriverConfig:
    """Runtime settings for a reconcile or delete run.

    Attributes:
        max_workers: Upper bound on concurrently running tasks
        conflict_retries: Re-fetch attempts after an optimistic-concurrency conflict
        crd_established: Wait for a custom resource definition to be served
        load_balancer: Wait for the front-end service to get an address
        bucket_deletion: Wait for a deleted backup bucket to disappear
    """
    max_workers: int = 4
    conflict_retries: int = 5
    crd_established: PollSettings = field(default_factory=lambda: PollSettings(120.0, 2.0))
    load_balancer: PollSettings = field(default_factory=lambda: PollSettings(10.0, 1.0))
    bucket_deletion: PollSettings = field(default_factory=lambda: PollSettings(120.0, 5.0))

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'DriverConfig':
        """Build settings from a parsed YAML mapping, keeping defaults for missing keys."""
        defaults = cls()
        if not data:
            return defaults
        if not isinstance(data, dict):
            raise ConfigError("settings file must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(unknown)}")

        max_workers = _number(data, 'max_workers', defaults.max_workers, int)
        if max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        conflict_retries = _number(data, 'conflict_retries', defaults.conflict_retries, int)
        if conflict_retries < 0:
            raise ConfigError("conflict_retries must not be negative")

        return cls(
            max_workers=max_workers,
            conflict_retries=conflict_retries,
            crd_established=PollSettings.from_dict(
                data.get('crd_established', {}), defaults.crd_established),
            load_balancer=PollSettings.from_dict(
                data.get('load_balancer', {}), defaults.load_balancer),
            bucket_deletion=PollSettings.from_dict(
                data.get('bucket_deletion', {}), defaults.bucket_deletion),
        )

    def to_dict(self) -> dict:
        return {
            'max_workers': self.max_workers,
            'conflict_retries': self.conflict_retries,
            'crd_established': self.crd_established.to_dict(),
            'load_balancer': self.load_balancer.to_dict(),
            'bucket_deletion': self.bucket_deletion.to_dict(),
        }


def load_driver_config(path: Optional[Path] = None) -> DriverConfig:
    """Load driver settings from a YAML file.

    Args:
        path: Settings file. None returns the built-in defaults.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    if path is None:
        return DriverConfig()
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"settings file not found: {path}")
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse {path}: {e}") from e
    config = DriverConfig.from_dict(data)
    logger.debug(f"Loaded driver settings from {path}")
    return config
