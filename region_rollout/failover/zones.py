"""
Hosted Zone Registrar

One public hosted zone per environment, created in the primary region only. Its
id is published to SSM Parameter Store so every other region references the same
zone instead of creating its own.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from ..config import PlatformConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostedZone:
    environment: str
    zone_name: str
    zone_id: str
    created: bool = False


class HostedZoneRegistrar:
    """Creates or looks up the hosted zone of each environment."""

    def __init__(self, config: PlatformConfig, route53=None, ssm_clients: Optional[Dict] = None):
        self.config = config
        self.route53 = route53 or boto3.client('route53')
        self._ssm_clients: Dict = dict(ssm_clients or {})
        self._zones: Dict[str, HostedZone] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _ssm(self, region: str):
        if region not in self._ssm_clients:
            self._ssm_clients[region] = boto3.client('ssm', region_name=region)
        return self._ssm_clients[region]

    async def ensure_zone(self, environment: str, region: Optional[str] = None) -> HostedZone:
        """
        Ensure the environment's hosted zone exists and return it.

        In the primary region the zone is created if missing; anywhere else it is
        only referenced. Calling again for an existing zone changes nothing.
        """
        region = region or self.config.primary_region
        if region != self.config.primary_region:
            return await self.lookup_zone(environment, region)

        lock = self._locks.setdefault(environment, asyncio.Lock())
        async with lock:
            if environment in self._zones:
                return self._zones[environment]

            zone_name = self.config.zone_name(environment)
            zone_id = await self._find_zone_id(zone_name)
            created = False

            if zone_id is None:
                zone_id = await self._create_zone(environment, zone_name)
                created = True

            await asyncio.to_thread(
                self._ssm(region).put_parameter,
                Name=self.config.zone_parameter_name(environment),
                Description=f"ID of the Route53 hosted zone for {zone_name}",
                Value=zone_id,
                Type='String',
                Overwrite=True,
            )

            zone = HostedZone(environment=environment, zone_name=zone_name, zone_id=zone_id, created=created)
            self._zones[environment] = zone
            logger.info(f"Hosted zone {zone_name} ({zone_id}) {'created' if created else 'already present'}")
            return zone

    async def lookup_zone(self, environment: str, region: str) -> HostedZone:
        """Reference the environment's zone from a non-primary region."""
        parameter = self.config.zone_parameter_name(environment)
        try:
            response = await asyncio.to_thread(self._ssm(region).get_parameter, Name=parameter)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ParameterNotFound':
                raise ConfigurationError(
                    f"Hosted zone for {environment} is not registered yet "
                    f"(missing {parameter} in {region})"
                ) from e
            raise

        return HostedZone(
            environment=environment,
            zone_name=self.config.zone_name(environment),
            zone_id=response['Parameter']['Value'],
        )

    async def ensure_all(self) -> Dict[str, HostedZone]:
        return {env: await self.ensure_zone(env) for env in self.config.environments}

    async def _find_zone_id(self, zone_name: str) -> Optional[str]:
        response = await asyncio.to_thread(
            self.route53.list_hosted_zones_by_name,
            DNSName=zone_name,
        )
        for zone in response['HostedZones']:
            if zone['Name'].rstrip('.') == zone_name.rstrip('.') and not zone.get('Config', {}).get('PrivateZone'):
                return zone['Id'].split('/')[-1]
        return None

    async def _create_zone(self, environment: str, zone_name: str) -> str:
        try:
            response = await asyncio.to_thread(
                self.route53.create_hosted_zone,
                Name=zone_name,
                CallerReference=f"{self.config.platform_name}-{environment}-hosted-zone",
                HostedZoneConfig={
                    'Comment': f"Hosted zone for ingress endpoints in {environment} environment",
                    'PrivateZone': False,
                },
            )
        except ClientError as e:
            # Same caller reference means an earlier call already created it.
            if e.response.get('Error', {}).get('Code') == 'HostedZoneAlreadyExists':
                zone_id = await self._find_zone_id(zone_name)
                if zone_id:
                    return zone_id
            raise

        return response['HostedZone']['Id'].split('/')[-1]
