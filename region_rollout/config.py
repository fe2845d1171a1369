"""
Platform Configuration

Loads the platform configuration once at startup (environment variables, then an
optional YAML file on top), validates it and hands out one immutable object.
Nothing downstream reads the environment again.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class RolloutMode(Enum):
    """How a region's rollout is gated"""
    STANDARD = "standard"
    DISASTER_RECOVERY = "disaster_recovery"


def _split_env(var_name: str, default: str) -> List[str]:
    """Parse a comma separated list from an environment variable."""
    value = os.getenv(var_name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class HealthCheckConfig:
    """Configuration for endpoint health probes"""
    endpoint_path: str = "/"
    port: int = 443
    timeout_seconds: int = 5
    interval_seconds: int = 30
    failure_threshold: int = 3


@dataclass(frozen=True)
class PlatformConfig:
    """Validated configuration for one platform instance."""

    environments: List[str]
    regions: List[str]
    primary_region: str
    platform_name: str = "iot-platform"
    service_name: str = "iot"
    base_domain: str = "example.com"
    account_ids: Dict[str, str] = field(default_factory=dict)
    default_account_id: Optional[str] = None
    rollout_modes: Dict[str, RolloutMode] = field(default_factory=dict)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    endpoints: Dict[str, Dict[str, str]] = field(default_factory=dict)
    templates: Dict[str, str] = field(default_factory=dict)
    deployment_role: Optional[str] = None
    alertmanager_url: Optional[str] = None
    log_level: str = "INFO"
    structured_logs: bool = True
    health_port: int = 8080
    metrics_port: int = 9090

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PlatformConfig":
        """Build a config from the merged env/YAML dictionary."""
        try:
            modes = {
                region: RolloutMode(str(mode).lower())
                for region, mode in (raw.get("rollout_modes") or {}).items()
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid rollout mode: {e}") from e

        try:
            health_check = HealthCheckConfig(**(raw.get("health_check") or {}))
        except TypeError as e:
            raise ConfigurationError(f"Invalid health_check section: {e}") from e

        regions = list(raw.get("regions") or [])
        config = cls(
            environments=list(raw.get("environments") or []),
            regions=regions,
            primary_region=raw.get("primary_region") or (regions[0] if regions else ""),
            platform_name=raw.get("platform_name", "iot-platform"),
            service_name=raw.get("service_name", "iot"),
            base_domain=raw.get("base_domain", "example.com"),
            account_ids=dict(raw.get("account_ids") or {}),
            default_account_id=raw.get("default_account_id") or None,
            rollout_modes=modes,
            health_check=health_check,
            endpoints=dict(raw.get("endpoints") or {}),
            templates=dict(raw.get("templates") or {}),
            deployment_role=raw.get("deployment_role") or None,
            alertmanager_url=raw.get("alertmanager_url") or None,
            log_level=raw.get("log_level", "INFO"),
            structured_logs=bool(raw.get("structured_logs", True)),
            health_port=int(raw.get("health_port", 8080)),
            metrics_port=int(raw.get("metrics_port", 9090)),
        )
        config.validate()
        return config

    def validate(self) -> bool:
        """Validate configuration; raises ConfigurationError on the first problem."""
        if not self.environments:
            raise ConfigurationError("At least one environment must be configured")
        if not self.regions:
            raise ConfigurationError("At least one region must be configured")
        if self.primary_region not in self.regions:
            raise ConfigurationError(
                f"Primary region '{self.primary_region}' is not one of {self.regions}"
            )

        for region in self.rollout_modes:
            if region not in self.regions:
                raise ConfigurationError(f"Rollout mode set for unknown region '{region}'")

        for env in self.account_ids:
            if env not in self.environments:
                raise ConfigurationError(f"Account id set for unknown environment '{env}'")

        if self.health_check.failure_threshold < 1:
            raise ConfigurationError("health_check.failure_threshold must be >= 1")
        if self.health_check.interval_seconds <= 0:
            raise ConfigurationError("health_check.interval_seconds must be > 0")

        return True

    def mode_for(self, region: str) -> RolloutMode:
        return self.rollout_modes.get(region, RolloutMode.STANDARD)

    def zone_name(self, environment: str) -> str:
        """Domain clients resolve for an environment, e.g. iot-dev.example.com"""
        return f"{self.service_name}-{environment}.{self.base_domain}"

    def endpoint_domain(self, environment: str, region: str) -> str:
        """Regional ingress domain for an environment."""
        explicit = self.endpoints.get(environment, {}).get(region)
        if explicit:
            return explicit
        return f"{region}.{self.zone_name(environment)}"

    def routing_domain(self, environment: str) -> str:
        """Name the failover records are published under."""
        return f"ingress.{self.zone_name(environment)}"

    def zone_parameter_name(self, environment: str) -> str:
        """SSM parameter that carries the hosted zone id across regions."""
        return f"/{self.platform_name}/{environment}/route53-hosted-zone-id"


def load_config(config_path: Optional[str] = None) -> PlatformConfig:
    """Load configuration from environment variables and an optional YAML file"""
    config: Dict[str, Any] = {
        "environments": _split_env("DEPLOYMENT_ENVIRONMENTS", "dev"),
        "regions": _split_env("DEPLOYMENT_REGIONS", "eu-west-1"),
        "primary_region": os.getenv("PRIMARY_REGION", ""),
        "platform_name": os.getenv("PLATFORM_NAME", "iot-platform"),
        "service_name": os.getenv("SERVICE_NAME", "iot"),
        "base_domain": os.getenv("BASE_DOMAIN", "example.com"),
        "default_account_id": os.getenv("DEFAULT_ACCOUNT_ID", ""),
        "deployment_role": os.getenv("DEPLOYMENT_ROLE", ""),
        "alertmanager_url": os.getenv("ALERTMANAGER_URL", ""),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "structured_logs": os.getenv("STRUCTURED_LOGS", "true").lower() == "true",
    }

    dr_regions = _split_env("DR_REGIONS", "")
    if dr_regions:
        config["rollout_modes"] = {
            region: RolloutMode.DISASTER_RECOVERY.value for region in dr_regions
        }

    config_path = config_path or os.getenv("ROLLOUT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                file_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config file {config_path}: {e}") from e
        if file_config:
            config.update(file_config)
        logger.info(f"Loaded configuration from {config_path}")

    return PlatformConfig.from_dict(config)
