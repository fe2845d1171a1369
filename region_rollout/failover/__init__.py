"""Failover routing controller."""

from .controller import DomainRouting, FailoverController
from .dns import DNSRecord, DNSRecordSet, Route53RecordWriter
from .health import Endpoint, EndpointRole, HealthCheck, HealthProbe, HealthState, ProbeResult
from .routing import RoutingDecision, derive_routing, primary_of
from .zones import HostedZone, HostedZoneRegistrar

__all__ = [
    "DomainRouting",
    "FailoverController",
    "DNSRecord",
    "DNSRecordSet",
    "Route53RecordWriter",
    "Endpoint",
    "EndpointRole",
    "HealthCheck",
    "HealthProbe",
    "HealthState",
    "ProbeResult",
    "RoutingDecision",
    "derive_routing",
    "primary_of",
    "HostedZone",
    "HostedZoneRegistrar",
]
