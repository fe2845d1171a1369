"""Deployment-wave orchestrator."""

from .executor import StageExecutor, TargetResult, TargetStatus
from .gates import GateCondition, GateEvaluator, GateKind, GateStatus
from .groups import DEFAULT_CATALOG, PHASE_ORDER, Phase, ResourceGroup
from .planner import Wave, plan_waves, validate_wiring
from .providers import (
    ApplyResult,
    CloudFormationProvider,
    DryRunProvider,
    GroupState,
    ResourceGroupProvider,
)
from .rollout import Rollout, RolloutCoordinator
from .targets import DeploymentTarget, resolve_targets

__all__ = [
    "StageExecutor",
    "TargetResult",
    "TargetStatus",
    "GateCondition",
    "GateEvaluator",
    "GateKind",
    "GateStatus",
    "DEFAULT_CATALOG",
    "PHASE_ORDER",
    "Phase",
    "ResourceGroup",
    "Wave",
    "plan_waves",
    "validate_wiring",
    "ApplyResult",
    "CloudFormationProvider",
    "DryRunProvider",
    "GroupState",
    "ResourceGroupProvider",
    "Rollout",
    "RolloutCoordinator",
    "DeploymentTarget",
    "resolve_targets",
]
