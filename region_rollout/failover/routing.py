"""
Routing derivation.

A pure function from the endpoints of one domain, their current health and the
currently published routing to the endpoint that should be authoritative.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .health import Endpoint, EndpointRole


@dataclass(frozen=True)
class RoutingDecision:
    active: str  # endpoint_id
    reason: str  # primary_healthy, failover, retained, initial


def primary_of(endpoints: List[Endpoint]) -> Endpoint:
    primaries = [e for e in endpoints if e.role == EndpointRole.PRIMARY]
    if len(primaries) != 1:
        raise ValueError(f"Expected exactly one PRIMARY endpoint, found {len(primaries)}")
    return primaries[0]


def derive_routing(
    endpoints: List[Endpoint],
    healthy: Dict[str, bool],
    previous: Optional[str] = None,
) -> RoutingDecision:
    """
    Decide which endpoint the domain routes to.

    1. The PRIMARY endpoint whenever it is healthy, even right after a failover.
    2. Otherwise the first healthy SECONDARY by region name.
    3. Otherwise keep the previous routing; traffic is never blackholed.
       With nothing published yet, the PRIMARY.
    """
    primary = primary_of(endpoints)
    if healthy.get(primary.endpoint_id, False):
        return RoutingDecision(primary.endpoint_id, "primary_healthy")

    secondaries = sorted(
        (e for e in endpoints if e.role == EndpointRole.SECONDARY),
        key=lambda e: e.region,
    )
    for endpoint in secondaries:
        if healthy.get(endpoint.endpoint_id, False):
            return RoutingDecision(endpoint.endpoint_id, "failover")

    if previous is not None:
        return RoutingDecision(previous, "retained")

    return RoutingDecision(primary.endpoint_id, "initial")
