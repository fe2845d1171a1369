"""
Wave Planner

Turns a deployment target into its ordered list of waves. The phase order and
the gating rules are data here, so a plan can be inspected and tested without
touching any infrastructure.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import RolloutMode
from ..errors import ConfigurationError
from .gates import GateCondition
from .groups import DEFAULT_CATALOG, PHASE_ORDER, Catalog, Phase, ResourceGroup
from .targets import DeploymentTarget

logger = logging.getLogger(__name__)


@dataclass
class Wave:
    """Resource groups applied together, behind zero or more gates"""
    name: str
    phase: Phase
    groups: List[ResourceGroup]
    gates: List[GateCondition] = field(default_factory=list)

    @property
    def group_names(self) -> List[str]:
        return [g.name for g in self.groups]


def dr_gate_id(target: DeploymentTarget) -> str:
    return f"{target.target_id}:dr-approval"


def data_identity_gate_id(target: DeploymentTarget) -> str:
    return f"{target.target_id}:data-identity-approval"


def plan_waves(
    target: DeploymentTarget,
    mode: RolloutMode = RolloutMode.STANDARD,
    catalog: Optional[Catalog] = None,
) -> List[Wave]:
    """
    Build the ordered waves for one target.

    - DISASTER_RECOVERY: one manual gate, shared by every wave of the target.
    - Always: the data-identity wave has its own manual gate as well.
    - Everything else is always-open.
    """
    catalog = DEFAULT_CATALOG if catalog is None else catalog

    dr_gate = None
    if mode == RolloutMode.DISASTER_RECOVERY:
        dr_gate = GateCondition.manual_approval(
            dr_gate_id(target),
            f"Approve deployment to DR region {target.region} "
            f"for environment {target.environment}",
        )

    waves = []
    for phase in PHASE_ORDER:
        groups = list(catalog.get(phase, ()))
        if not groups:
            continue

        gates: List[GateCondition] = []
        if dr_gate is not None:
            gates.append(dr_gate)

        if phase == Phase.DATA_IDENTITY:
            gates.append(GateCondition.manual_approval(
                data_identity_gate_id(target),
                f"Approve deployment of Data Analytics and Identity components "
                f"to {target.region} for environment {target.environment}",
            ))

        if not gates:
            gates.append(GateCondition.always_open(f"{target.target_id}:{phase.value}"))

        waves.append(Wave(
            name=f"{target.environment}-{target.region}-{phase.value}-wave",
            phase=phase,
            groups=groups,
            gates=gates,
        ))

    validate_wiring(waves)

    logger.debug(
        f"Planned {len(waves)} waves for {target.target_id} (mode={mode.value})"
    )
    return waves


def validate_wiring(waves: List[Wave]) -> Dict[str, str]:
    """
    Check that every declared input is produced by a group in an earlier wave.

    Returns:
        Mapping of output name to the group producing it

    Raises:
        ConfigurationError: on an unresolved input or an output produced twice
    """
    producers: Dict[str, str] = {}

    for wave in waves:
        for group in wave.groups:
            missing = [name for name in group.inputs if name not in producers]
            if missing:
                raise ConfigurationError(
                    f"Group '{group.name}' in wave {wave.name} needs unresolved "
                    f"input(s): {', '.join(missing)}"
                )

        # Outputs become visible only after the whole wave, groups in a wave run concurrently.
        for group in wave.groups:
            for name in group.outputs:
                if name in producers:
                    raise ConfigurationError(
                        f"Output '{name}' produced by both '{producers[name]}' and '{group.name}'"
                    )
                producers[name] = group.name

    return producers
