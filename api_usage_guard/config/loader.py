"""
Configuration management and loading.

Handles quota overrides from YAML and settings from environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from .quotas import DEFAULT_SERVICE_QUOTAS, ServiceQuota
from ..storage.models import Service


@dataclass(frozen=True)
class MonitoringConfig:
    """Thresholds for alerting."""
    error_spike_threshold: int = 10
    slow_response_ms: float = 10000.0

    def __post_init__(self):
        """Validate thresholds are positive."""
        if self.error_spike_threshold <= 0:
            raise ValueError("error_spike_threshold must be > 0")
        if self.slow_response_ms <= 0:
            raise ValueError("slow_response_ms must be > 0")


@dataclass(frozen=True)
class GuardConfig:
    """Complete quota and monitoring configuration."""
    services: Dict[str, ServiceQuota] = field(
        default_factory=lambda: dict(DEFAULT_SERVICE_QUOTAS)
    )
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def get_quota(self, service: str) -> Optional[ServiceQuota]:
        """Get quota for a service, or None when it has no quota entry."""
        return self.services.get(service)


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""
    db_path: str = "api_usage_guard.db"
    config_path: Optional[str] = None
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings from API_USAGE_GUARD_* environment variables."""
    return Settings(
        db_path=os.getenv("API_USAGE_GUARD_DB", "api_usage_guard.db"),
        config_path=os.getenv("API_USAGE_GUARD_CONFIG") or None,
        log_level=os.getenv("API_USAGE_GUARD_LOG_LEVEL", "INFO").upper(),
    )


def load_config(settings: Optional[Settings] = None) -> GuardConfig:
    """Built-in defaults, or the YAML file named by the settings."""
    settings = settings or load_settings()
    if settings.config_path:
        return load_quota_config(settings.config_path)
    return GuardConfig()


_QUOTA_KEYS = {
    'name', 'daily_limit', 'hourly_limit', 'minute_limit', 'monthly_limit',
    'authenticated_hourly_limit', 'warning_threshold'
}
_LIMIT_KEYS = _QUOTA_KEYS - {'name', 'warning_threshold'}


def load_quota_config(path: str) -> GuardConfig:
    """Load and validate quota configuration from YAML file.

    Service entries are merged onto the built-in defaults, so a file only
    needs to list what it changes. Unknown keys are rejected.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Quota config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'services', 'monitoring'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    services_data = raw_config.get('services') or {}
    if not isinstance(services_data, dict):
        raise ValueError("'services' must be a dictionary")

    valid_services = {service.value for service in Service}
    services = dict(DEFAULT_SERVICE_QUOTAS)
    for service_name, service_data in services_data.items():
        if service_name not in valid_services:
            raise ValueError(
                f"Unknown service '{service_name}', must be one of: {sorted(valid_services)}"
            )
        if not isinstance(service_data, dict):
            raise ValueError(f"Service '{service_name}' must be a dictionary")
        services[service_name] = _parse_service_quota(
            service_data, services.get(service_name), f"services.{service_name}"
        )

    monitoring_data = raw_config.get('monitoring') or {}
    if not isinstance(monitoring_data, dict):
        raise ValueError("'monitoring' must be a dictionary")
    monitoring = _parse_monitoring(monitoring_data)

    return GuardConfig(services=services, monitoring=monitoring)


def _parse_service_quota(
    data: Dict,
    base: Optional[ServiceQuota],
    path: str
) -> ServiceQuota:
    """Parse and validate one service's quota overrides.

    Args:
        data: Service quota data
        base: Built-in quota to merge onto, if any
        path: Path for error messages

    Returns:
        Validated ServiceQuota

    Raises:
        ValueError: If configuration is invalid
    """
    unknown_keys = set(data.keys()) - _QUOTA_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key in _LIMIT_KEYS & set(data.keys()):
        limit = data[key]
        if limit is None:
            values[key] = None
            continue
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValueError(f"'{key}' in {path} must be a positive integer or null")
        values[key] = limit

    if 'warning_threshold' in data:
        threshold = data['warning_threshold']
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) \
                or not 0 < threshold <= 1:
            raise ValueError(f"'warning_threshold' in {path} must be in (0, 1]")
        values['warning_threshold'] = float(threshold)

    if 'name' in data:
        if not isinstance(data['name'], str) or not data['name'].strip():
            raise ValueError(f"'name' in {path} must be a non-empty string")
        values['name'] = data['name']

    if base is not None:
        return base.with_overrides(**values)

    if 'name' not in values:
        raise ValueError(f"Missing required 'name' in {path}")
    return ServiceQuota(**values)


def _parse_monitoring(data: Dict) -> MonitoringConfig:
    allowed_keys = {'error_spike_threshold', 'slow_response_ms'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in monitoring: {unknown_keys}")

    values = {}
    if 'error_spike_threshold' in data:
        threshold = data['error_spike_threshold']
        if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold <= 0:
            raise ValueError("'error_spike_threshold' in monitoring must be a positive integer")
        values['error_spike_threshold'] = threshold
    if 'slow_response_ms' in data:
        slow = data['slow_response_ms']
        if isinstance(slow, bool) or not isinstance(slow, (int, float)) or slow <= 0:
            raise ValueError("'slow_response_ms' in monitoring must be > 0")
        values['slow_response_ms'] = float(slow)

    return MonitoringConfig(**values)
