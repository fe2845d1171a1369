"""
Prometheus metrics for rollouts and failover routing.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


class RolloutMetrics:
    """
    Prometheus metrics shared by the orchestrator and the failover controller.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            registry: Prometheus registry to use (default: a fresh private registry)
        """
        self.registry = registry or CollectorRegistry()

        self.group_applies = Counter(
            'rollout_group_applies_total',
            'Resource group applies by phase and result',
            ['phase', 'result'],
            registry=self.registry
        )

        self.group_apply_duration = Histogram(
            'rollout_group_apply_duration_seconds',
            'Resource group apply duration in seconds',
            ['phase'],
            buckets=[1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0],
            registry=self.registry
        )

        self.targets_finished = Counter(
            'rollout_targets_total',
            'Deployment targets that finished a rollout, by final status',
            ['status'],
            registry=self.registry
        )

        self.pending_gates = Gauge(
            'rollout_pending_gates',
            'Manual approval gates currently waiting for an operator',
            registry=self.registry
        )

        self.endpoint_healthy = Gauge(
            'failover_endpoint_healthy',
            'Endpoint health (1=healthy, 0=unhealthy)',
            ['environment', 'region'],
            registry=self.registry
        )

        self.routing_changes = Counter(
            'failover_routing_changes_total',
            'DNS routing changes published',
            ['environment', 'from_region', 'to_region'],
            registry=self.registry
        )

    def record_apply(self, phase: str, success: bool, duration: float):
        self.group_applies.labels(phase=phase, result='success' if success else 'failure').inc()
        self.group_apply_duration.labels(phase=phase).observe(duration)

    def record_target(self, status: str):
        self.targets_finished.labels(status=status).inc()

    def set_endpoint_health(self, environment: str, region: str, healthy: bool):
        self.endpoint_healthy.labels(environment=environment, region=region).set(1 if healthy else 0)

    def record_routing_change(self, environment: str, from_region: Optional[str], to_region: str):
        self.routing_changes.labels(
            environment=environment,
            from_region=from_region or 'none',
            to_region=to_region
        ).inc()

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
