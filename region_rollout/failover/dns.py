"""
DNS Routing Records

The routing artifact clients resolve against: one failover record per endpoint
under a shared domain name, exactly one of them PRIMARY, each bound to its
Route53 health check. Published with Route53 change batches.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from ..config import HealthCheckConfig
from .health import Endpoint, EndpointRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DNSRecord:
    """Represents a failover DNS record"""
    record_name: str
    set_identifier: str
    value: str
    failover: EndpointRole
    health_check_id: Optional[str] = None
    record_type: str = "CNAME"
    ttl: int = 60

    def to_route53(self) -> Dict:
        record = {
            'Name': self.record_name,
            'Type': self.record_type,
            'TTL': self.ttl,
            'ResourceRecords': [{'Value': self.value}],
            'SetIdentifier': self.set_identifier,
            'Failover': self.failover.value,
        }
        if self.health_check_id:
            record['HealthCheckId'] = self.health_check_id
        return record


@dataclass(frozen=True)
class DNSRecordSet:
    """All failover records of one domain name"""
    domain_name: str
    records: tuple = field(default_factory=tuple)

    def __post_init__(self):
        primaries = [r for r in self.records if r.failover == EndpointRole.PRIMARY]
        if len(primaries) != 1:
            raise ValueError(
                f"{self.domain_name} must have exactly one PRIMARY record, got {len(primaries)}"
            )

    @classmethod
    def build(
        cls,
        domain_name: str,
        endpoints: List[Endpoint],
        active_id: str,
        health_check_ids: Dict[str, Optional[str]],
    ) -> "DNSRecordSet":
        """The active endpoint's record is PRIMARY, every other endpoint's is SECONDARY."""
        ordered = sorted(endpoints, key=lambda e: (e.endpoint_id != active_id, e.role.value, e.region))
        records = tuple(
            DNSRecord(
                record_name=domain_name,
                set_identifier=e.set_identifier,
                value=e.domain_name,
                failover=EndpointRole.PRIMARY if e.endpoint_id == active_id else EndpointRole.SECONDARY,
                health_check_id=health_check_ids.get(e.endpoint_id),
            )
            for e in ordered
        )
        return cls(domain_name=domain_name, records=records)

    @property
    def primary(self) -> DNSRecord:
        return next(r for r in self.records if r.failover == EndpointRole.PRIMARY)

    @property
    def secondaries(self) -> List[DNSRecord]:
        return [r for r in self.records if r.failover == EndpointRole.SECONDARY]

    def published_records(self) -> List[DNSRecord]:
        """
        Records written to Route53.

        Route53 accepts one PRIMARY and one SECONDARY per name, so only the first
        standby is published; the others are tracked here and promoted by the
        controller when routing moves.
        """
        return [self.primary] + self.secondaries[:1]


class Route53RecordWriter:
    """
    Route53 publisher for failover record sets and their health checks.
    """

    def __init__(self, route53=None, region_name: str = 'us-east-1', history_size: int = 200):
        self.route53 = route53 or boto3.client('route53', region_name=region_name)
        self.update_history: Deque[Dict] = deque(maxlen=history_size)

    async def create_health_check(self, endpoint: Endpoint, config: HealthCheckConfig) -> str:
        """
        Create (or return the existing) Route53 health check for an endpoint.

        The caller reference is derived from the endpoint so repeated calls
        return the same health check.
        """
        try:
            response = await asyncio.to_thread(
                self.route53.create_health_check,
                CallerReference=f"{endpoint.set_identifier}-{config.port}-{config.failure_threshold}",
                HealthCheckConfig={
                    'Type': 'HTTPS',
                    'ResourcePath': config.endpoint_path,
                    'FullyQualifiedDomainName': endpoint.domain_name,
                    'Port': config.port,
                    'RequestInterval': 30 if config.interval_seconds >= 30 else 10,
                    'FailureThreshold': config.failure_threshold,
                },
            )
            health_check_id = response['HealthCheck']['Id']
            logger.info(f"Health check {health_check_id} bound to {endpoint.domain_name}")
            return health_check_id

        except ClientError as e:
            logger.error(f"Failed to create health check for {endpoint.domain_name}: {e}")
            raise

    async def publish(
        self,
        zone_id: str,
        record_set: DNSRecordSet,
        previous: Optional[DNSRecordSet] = None,
    ) -> str:
        """
        UPSERT the published records of a record set in one change batch, deleting
        previously published records that are no longer part of it.

        Returns:
            Route53 change id
        """
        wanted = record_set.published_records()
        wanted_ids = {r.set_identifier for r in wanted}

        changes = [
            {'Action': 'DELETE', 'ResourceRecordSet': r.to_route53()}
            for r in (previous.published_records() if previous else [])
            if r.set_identifier not in wanted_ids
        ]
        changes += [{'Action': 'UPSERT', 'ResourceRecordSet': r.to_route53()} for r in wanted]

        response = await asyncio.to_thread(
            self.route53.change_resource_record_sets,
            HostedZoneId=zone_id,
            ChangeBatch={
                'Comment': f"Route {record_set.domain_name} to {record_set.primary.set_identifier}",
                'Changes': changes,
            }
        )
        change_id = response['ChangeInfo']['Id']

        self.update_history.append({
            'timestamp': datetime.utcnow().isoformat(),
            'action': 'publish_failover',
            'domain': record_set.domain_name,
            'primary': record_set.primary.set_identifier,
            'change_id': change_id,
        })
        logger.info(
            f"Published {record_set.domain_name}: PRIMARY={record_set.primary.value} "
            f"(change {change_id})"
        )
        return change_id

    async def wait_for_change(self, change_id: str, timeout_seconds: int = 300, poll_seconds: int = 5):
        """Wait for a DNS change to propagate"""
        start_time = datetime.utcnow()

        while True:
            response = await asyncio.to_thread(self.route53.get_change, Id=change_id)

            if response['ChangeInfo']['Status'] == 'INSYNC':
                logger.info(f"DNS change {change_id} propagated")
                return True

            elapsed = (datetime.utcnow() - start_time).total_seconds()
            if elapsed > timeout_seconds:
                logger.warning(f"DNS change {change_id} not in sync after {elapsed:.0f}s")
                return False

            await asyncio.sleep(poll_seconds)

    async def get_current_records(self, zone_id: str, domain_name: str) -> List[Dict]:
        """Failover records currently published for a domain"""
        response = await asyncio.to_thread(
            self.route53.list_resource_record_sets,
            HostedZoneId=zone_id,
            StartRecordName=domain_name,
        )

        return [
            {
                'name': record['Name'],
                'type': record['Type'],
                'set_identifier': record.get('SetIdentifier'),
                'failover': record.get('Failover'),
                'health_check_id': record.get('HealthCheckId'),
                'values': [v['Value'] for v in record.get('ResourceRecords', [])],
            }
            for record in response['ResourceRecordSets']
            if record['Name'].rstrip('.') == domain_name.rstrip('.') and 'Failover' in record
        ]
