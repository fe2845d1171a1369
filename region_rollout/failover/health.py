"""
Endpoint Health

HTTPS reachability probes for regional ingress endpoints, and the health-check
state each probe result feeds.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

import requests

from ..config import HealthCheckConfig

logger = logging.getLogger(__name__)


class EndpointRole(Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class HealthState(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class Endpoint:
    """A region's public ingress address for one environment"""
    environment: str
    region: str
    domain_name: str
    role: EndpointRole

    @property
    def endpoint_id(self) -> str:
        return f"{self.environment}-{self.region}"

    @property
    def set_identifier(self) -> str:
        return f"{self.environment}-{self.region}-endpoint"


@dataclass
class ProbeResult:
    """Result of one probe"""
    healthy: bool
    status_code: Optional[int]
    response_time_ms: float
    error: Optional[str] = None


@dataclass
class HealthCheck:
    """
    Rolling health state of one endpoint.

    Goes UNHEALTHY after `failure_threshold` consecutive failed probes and back to
    HEALTHY on the first passing probe.
    """
    endpoint_id: str
    failure_threshold: int = 3
    health_check_id: Optional[str] = None
    state: HealthState = HealthState.HEALTHY
    consecutive_failures: int = 0
    total_passes: int = 0
    total_failures: int = 0
    last_checked: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.state == HealthState.HEALTHY

    def record(self, passed: bool, error: Optional[str] = None) -> bool:
        """Apply one probe result. Returns True if the state changed."""
        previous = self.state
        self.last_checked = datetime.utcnow().isoformat()

        if passed:
            self.total_passes += 1
            self.consecutive_failures = 0
            self.last_error = None
            self.state = HealthState.HEALTHY
        else:
            self.total_failures += 1
            self.consecutive_failures += 1
            self.last_error = error
            if self.consecutive_failures >= self.failure_threshold:
                self.state = HealthState.UNHEALTHY

        return self.state != previous

    def to_dict(self) -> Dict:
        return {
            "endpoint_id": self.endpoint_id,
            "health_check_id": self.health_check_id,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "total_passes": self.total_passes,
            "total_failures": self.total_failures,
            "last_checked": self.last_checked,
            "last_error": self.last_error,
        }


class HealthProbe:
    """Performs HTTPS health probes against endpoints"""

    def __init__(self, config: HealthCheckConfig):
        self.config = config

    def url_for(self, endpoint: Endpoint) -> str:
        return f"https://{endpoint.domain_name}:{self.config.port}{self.config.endpoint_path}"

    async def probe(self, endpoint: Endpoint) -> ProbeResult:
        """Probe an endpoint. Never raises: any failure to reach it is a failed probe."""
        start_time = datetime.utcnow()

        try:
            response = await asyncio.to_thread(
                requests.get,
                self.url_for(endpoint),
                timeout=self.config.timeout_seconds,
                verify=True
            )
            duration = (datetime.utcnow() - start_time).total_seconds() * 1000
            healthy = 200 <= response.status_code < 300

            return ProbeResult(
                healthy=healthy,
                status_code=response.status_code,
                response_time_ms=duration,
                error=None if healthy else f"HTTP {response.status_code}",
            )

        except requests.exceptions.Timeout:
            return ProbeResult(
                healthy=False,
                status_code=None,
                response_time_ms=self.config.timeout_seconds * 1000,
                error='timeout'
            )
        except requests.exceptions.RequestException as e:
            duration = (datetime.utcnow() - start_time).total_seconds() * 1000
            return ProbeResult(
                healthy=False,
                status_code=None,
                response_time_ms=duration,
                error=str(e)
            )
