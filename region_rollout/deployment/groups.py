"""
Resource group catalog.

Each resource group belongs to one phase and declares the named outputs it
produces and the named inputs it consumes. The executor wires outputs to inputs
by name; the planner checks the wiring before anything is applied.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Phase(Enum):
    """Deployment phases, in data-flow order"""
    CORE_INGEST = "core-ingest"
    STORAGE = "storage"
    INSIGHTS = "insights"
    CROSS_CUTTING = "cross-cutting"
    DATA_IDENTITY = "data-identity"


# Later phases read from earlier ones (insights reads the storage catalog, ...).
PHASE_ORDER: Tuple[Phase, ...] = (
    Phase.CORE_INGEST,
    Phase.STORAGE,
    Phase.INSIGHTS,
    Phase.CROSS_CUTTING,
    Phase.DATA_IDENTITY,
)


@dataclass(frozen=True)
class ResourceGroup:
    """A named unit of infrastructure applied as a whole"""
    name: str
    phase: Phase
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    description: str = ""


Catalog = Dict[Phase, Tuple[ResourceGroup, ...]]


DEFAULT_CATALOG: Catalog = {
    Phase.CORE_INGEST: (
        ResourceGroup(
            name="iot",
            phase=Phase.CORE_INGEST,
            outputs=("iot_endpoint_domain",),
            description="Device policy, topic rule and custom ingress domain",
        ),
        ResourceGroup(
            name="streaming",
            phase=Phase.CORE_INGEST,
            outputs=("stream_name",),
            description="Device data stream",
        ),
    ),
    Phase.STORAGE: (
        ResourceGroup(
            name="data-lake",
            phase=Phase.STORAGE,
            inputs=("stream_name",),
            outputs=("database_name", "raw_bucket_name"),
            description="Raw/processed buckets, delivery stream and catalog database",
        ),
    ),
    Phase.INSIGHTS: (
        ResourceGroup(
            name="analytics",
            phase=Phase.INSIGHTS,
            inputs=("database_name",),
            outputs=("analytics_workgroup",),
            description="Query workgroup and saved queries",
        ),
        ResourceGroup(
            name="dashboard",
            phase=Phase.INSIGHTS,
            inputs=("database_name",),
            description="Operational dashboards",
        ),
    ),
    Phase.CROSS_CUTTING: (
        ResourceGroup(
            name="cost-monitoring",
            phase=Phase.CROSS_CUTTING,
            description="Cost explorer collection and cost dashboard",
        ),
    ),
    Phase.DATA_IDENTITY: (
        ResourceGroup(
            name="data-analytics",
            phase=Phase.DATA_IDENTITY,
            inputs=("database_name",),
            description="Data analytics applications",
        ),
        ResourceGroup(
            name="identity",
            phase=Phase.DATA_IDENTITY,
            outputs=("user_pool_id",),
            description="Tenant identity pools",
        ),
    ),
}
