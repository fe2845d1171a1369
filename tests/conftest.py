"""
Shared fixtures for the rollout and failover tests.

No test talks to AWS or the network: boto3 clients are MagicMocks and resource
groups are applied by an in-memory provider.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from region_rollout.config import HealthCheckConfig, PlatformConfig, RolloutMode
from region_rollout.deployment.providers import ApplyResult, GroupState, ResourceGroupProvider
from region_rollout.deployment.targets import DeploymentTarget
from region_rollout.metrics import RolloutMetrics


class RecordingProvider(ResourceGroupProvider):
    """Applies nothing; records every call and fails the groups it is told to."""

    def __init__(self, failures: Optional[Dict[str, BaseException]] = None, delay: float = 0.0):
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []

    async def apply(self, group, target, inputs):
        self.calls.append((target.target_id, group.name, dict(inputs)))
        if self.delay:
            await asyncio.sleep(self.delay)

        error = self.failures.get(f"{target.target_id}/{group.name}")
        if error is not None:
            raise error

        outputs = {name: f"{target.resource_prefix}-{name}" for name in group.outputs}
        return ApplyResult(group=group.name, target_id=target.target_id, outputs=outputs)

    async def describe(self, group, target):
        return GroupState(group=group.name, target_id=target.target_id, status="converged")

    def applied(self, target_id: str) -> List[str]:
        return [group for tid, group, _ in self.calls if tid == target_id]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def platform_config():
    return PlatformConfig(
        environments=["dev", "prod"],
        regions=["eu-west-1", "eu-central-1", "us-east-1"],
        primary_region="eu-west-1",
        account_ids={"prod": "222222222222"},
        default_account_id="111111111111",
        health_check=HealthCheckConfig(failure_threshold=3, interval_seconds=1),
    )


@pytest.fixture
def dr_config(platform_config):
    return PlatformConfig(
        environments=["dev"],
        regions=platform_config.regions,
        primary_region="eu-west-1",
        default_account_id="111111111111",
        rollout_modes={"us-east-1": RolloutMode.DISASTER_RECOVERY},
    )


@pytest.fixture
def target():
    return DeploymentTarget(
        environment="dev",
        region="eu-west-1",
        account_id="111111111111",
        is_primary_region=True,
    )


@pytest.fixture
def dr_target():
    return DeploymentTarget(environment="dev", region="us-east-1", account_id="111111111111")


@pytest.fixture
def recording_provider():
    return RecordingProvider()


@pytest.fixture
def metrics():
    return RolloutMetrics()


@pytest.fixture
def wait_until():
    """Poll a predicate from inside the event loop until it holds."""

    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not reached before timeout")
            await asyncio.sleep(0.01)

    return _wait
