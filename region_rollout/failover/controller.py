"""
Failover Controller

Tracks the health of every regional ingress endpoint and keeps each
environment's DNS routing pointed at a healthy region: the primary whenever it
is healthy, otherwise a healthy secondary, otherwise whatever was published last.
Runs independently of rollouts and is the only writer of routing records.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import PlatformConfig
from .dns import DNSRecordSet, Route53RecordWriter
from .health import Endpoint, EndpointRole, HealthCheck, HealthProbe
from .routing import RoutingDecision, derive_routing
from .zones import HostedZoneRegistrar

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100


@dataclass
class DomainRouting:
    """Routing state of one environment's domain"""
    environment: str
    domain_name: str
    endpoints: List[Endpoint]
    zone_id: Optional[str] = None
    active: Optional[str] = None
    record_set: Optional[DNSRecordSet] = None
    publish_pending: bool = False
    last_changed_at: Optional[str] = None
    history: Deque[Dict] = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))


class FailoverController:
    """
    Multi-Region Failover Controller

    Probe results are the only input. Each result updates one endpoint's health
    check under that endpoint's lock; a health transition re-derives the routing
    of the endpoint's domain under the domain lock, and DNS is only written when
    the derived routing differs from what is published.
    """

    def __init__(
        self,
        config: PlatformConfig,
        writer: Optional[Route53RecordWriter] = None,
        registrar: Optional[HostedZoneRegistrar] = None,
        probe: Optional[HealthProbe] = None,
        metrics=None,
        alert_manager=None,
    ):
        self.config = config
        self.writer = writer
        self.registrar = registrar
        self.probe = probe or HealthProbe(config.health_check)
        self.metrics = metrics
        self.alert_manager = alert_manager

        self.endpoints: Dict[str, Endpoint] = {}
        self.checks: Dict[str, HealthCheck] = {}
        self.domains: Dict[str, DomainRouting] = {}
        self._endpoint_locks: Dict[str, asyncio.Lock] = {}
        self._domain_locks: Dict[str, asyncio.Lock] = {}
        self._running = False
        self._initialize_endpoints()

    def _initialize_endpoints(self):
        """One endpoint per environment and region; the primary region's is PRIMARY"""
        for env in self.config.environments:
            endpoints = []
            for region in self.config.regions:
                endpoint = Endpoint(
                    environment=env,
                    region=region,
                    domain_name=self.config.endpoint_domain(env, region),
                    role=EndpointRole.PRIMARY if region == self.config.primary_region else EndpointRole.SECONDARY,
                )
                endpoints.append(endpoint)
                self.endpoints[endpoint.endpoint_id] = endpoint
                self.checks[endpoint.endpoint_id] = HealthCheck(
                    endpoint_id=endpoint.endpoint_id,
                    failure_threshold=self.config.health_check.failure_threshold,
                )
                self._endpoint_locks[endpoint.endpoint_id] = asyncio.Lock()

            self.domains[env] = DomainRouting(
                environment=env,
                domain_name=self.config.routing_domain(env),
                endpoints=endpoints,
            )
            self._domain_locks[env] = asyncio.Lock()
            logger.info(f"Tracking {len(endpoints)} endpoints for {self.config.routing_domain(env)}")

    async def setup(self) -> None:
        """Resolve hosted zones, bind health checks and publish initial routing."""
        for env, domain in self.domains.items():
            if self.registrar:
                zone = await self.registrar.ensure_zone(env)
                domain.zone_id = zone.zone_id

            if self.writer:
                for endpoint in domain.endpoints:
                    self.checks[endpoint.endpoint_id].health_check_id = await self.writer.create_health_check(
                        endpoint, self.config.health_check
                    )

            await self.evaluate_routing(env)

    async def record_probe(
        self,
        endpoint_id: str,
        passed: bool,
        error: Optional[str] = None,
    ) -> Optional[RoutingDecision]:
        """
        Feed one probe result.

        Returns the routing decision if the result changed the endpoint's health
        (or a previous publish is still outstanding), None otherwise.
        """
        endpoint = self.endpoints[endpoint_id]
        check = self.checks[endpoint_id]

        async with self._endpoint_locks[endpoint_id]:
            transitioned = check.record(passed, error)

        if self.metrics:
            self.metrics.set_endpoint_health(endpoint.environment, endpoint.region, check.healthy)

        if transitioned:
            logger.warning(
                f"Endpoint {endpoint_id} is now {check.state.value} "
                f"(consecutive_failures={check.consecutive_failures})"
            )

        domain = self.domains[endpoint.environment]
        if transitioned or domain.publish_pending:
            return await self.evaluate_routing(endpoint.environment)
        return None

    async def check_endpoint(self, endpoint_id: str) -> Optional[RoutingDecision]:
        """Probe an endpoint and feed the result"""
        result = await self.probe.probe(self.endpoints[endpoint_id])
        if not result.healthy:
            logger.info(f"Probe failed for {endpoint_id}: {result.error}")
        return await self.record_probe(endpoint_id, result.healthy, result.error)

    async def evaluate_routing(self, environment: str) -> RoutingDecision:
        """
        Re-derive an environment's routing and publish it if it changed.

        With unchanged health this is a no-op. If the DNS write fails, the
        published routing stays as it was and the next probe retries.
        """
        domain = self.domains[environment]

        async with self._domain_locks[environment]:
            snapshot = {e.endpoint_id: self.checks[e.endpoint_id].healthy for e in domain.endpoints}
            decision = derive_routing(domain.endpoints, snapshot, domain.active)

            if decision.active == domain.active and not domain.publish_pending:
                return decision

            record_set = DNSRecordSet.build(
                domain.domain_name,
                domain.endpoints,
                decision.active,
                {eid: self.checks[eid].health_check_id for eid in snapshot},
            )

            if self.writer and domain.zone_id:
                try:
                    await self.writer.publish(domain.zone_id, record_set, previous=domain.record_set)
                except (ClientError, BotoCoreError) as e:
                    domain.publish_pending = True
                    logger.error(f"Failed to publish routing for {domain.domain_name}: {e}")
                    return decision

            previous = domain.active
            domain.active = decision.active
            domain.record_set = record_set
            domain.publish_pending = False
            domain.last_changed_at = datetime.utcnow().isoformat()
            domain.history.append({
                'timestamp': domain.last_changed_at,
                'from': previous,
                'to': decision.active,
                'reason': decision.reason,
            })

        if previous != decision.active:
            await self._announce(domain, previous, decision)
        return decision

    async def _announce(self, domain: DomainRouting, previous: Optional[str], decision: RoutingDecision):
        from_region = self.endpoints[previous].region if previous else None
        to_region = self.endpoints[decision.active].region
        logger.warning(f"Routing for {domain.domain_name}: {from_region} -> {to_region} ({decision.reason})")

        if self.metrics:
            self.metrics.record_routing_change(domain.environment, from_region, to_region)

        if not self.alert_manager or previous is None:
            return

        if decision.reason == "failover":
            name, severity = "FailoverActivated", "critical"
        else:
            name, severity = "PrimaryRestored", "info"

        await self.alert_manager.notify(
            name=name,
            severity=severity,
            region=to_region,
            message=f"{domain.domain_name} now routes to {to_region} (was {from_region})",
            labels={"environment": domain.environment, "source": from_region or "none", "target": to_region},
        )

    async def monitor_endpoint(self, endpoint_id: str):
        """Probe one endpoint on a fixed interval until stopped"""
        interval = self.config.health_check.interval_seconds

        while self._running:
            try:
                await self.check_endpoint(endpoint_id)
            except Exception:
                logger.exception(f"Error while monitoring {endpoint_id}")
            await asyncio.sleep(interval)

    async def continuous_monitoring(self):
        """Run one probe loop per endpoint"""
        self._running = True
        logger.info(
            f"Starting continuous monitoring of {len(self.endpoints)} endpoints "
            f"(interval: {self.config.health_check.interval_seconds}s)"
        )
        await asyncio.gather(*[
            asyncio.create_task(self.monitor_endpoint(eid), name=f"probe:{eid}")
            for eid in self.endpoints
        ])

    def stop_monitoring(self):
        self._running = False
        logger.info("Stopped continuous monitoring")

    def active_region(self, environment: str) -> Optional[str]:
        active = self.domains[environment].active
        return self.endpoints[active].region if active else None

    def get_status(self) -> Dict:
        """Routing and health snapshot for every environment"""
        return {
            env: {
                'domain': domain.domain_name,
                'zone_id': domain.zone_id,
                'active_region': self.active_region(env),
                'publish_pending': domain.publish_pending,
                'last_changed_at': domain.last_changed_at,
                'endpoints': [
                    {
                        'region': e.region,
                        'domain_name': e.domain_name,
                        'role': e.role.value,
                        **self.checks[e.endpoint_id].to_dict(),
                    }
                    for e in domain.endpoints
                ],
            }
            for env, domain in self.domains.items()
        }
