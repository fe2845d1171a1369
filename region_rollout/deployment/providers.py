"""
Resource Group Providers

A provider converges one resource group for one deployment target. Providers
are idempotent: applying an unchanged group is a no-op that still succeeds.
A failed convergence raises ApplyError.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError, WaiterError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import ApplyError
from .groups import ResourceGroup
from .targets import DeploymentTarget

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of a successful apply"""
    group: str
    target_id: str
    outputs: Dict[str, str] = field(default_factory=dict)
    changed: bool = True
    completed_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())


@dataclass
class GroupState:
    """Observed state of a resource group in a target"""
    group: str
    target_id: str
    status: str  # absent, in_progress, converged, failed
    outputs: Dict[str, str] = field(default_factory=dict)
    detail: Optional[str] = None


class ResourceGroupProvider:
    """Interface for resource group providers"""

    async def apply(
        self,
        group: ResourceGroup,
        target: DeploymentTarget,
        inputs: Dict[str, str],
    ) -> ApplyResult:
        raise NotImplementedError

    async def describe(self, group: ResourceGroup, target: DeploymentTarget) -> GroupState:
        raise NotImplementedError


class DryRunProvider(ResourceGroupProvider):
    """
    Provider that converges nothing.

    Logs each apply, reports success and fabricates output values from the
    target's resource prefix so later waves can be wired.
    """

    def __init__(self):
        self.applied: List[str] = []
        self._states: Dict[str, GroupState] = {}

    async def apply(self, group, target, inputs):
        key = f"{target.target_id}/{group.name}"
        outputs = {name: f"{target.resource_prefix}-{name.replace('_', '-')}" for name in group.outputs}
        changed = key not in self._states
        self._states[key] = GroupState(
            group=group.name, target_id=target.target_id, status="converged", outputs=outputs
        )
        self.applied.append(key)
        logger.info(f"[dry-run] apply {group.name} to {target.target_id} inputs={inputs}")
        return ApplyResult(group=group.name, target_id=target.target_id, outputs=outputs, changed=changed)

    async def describe(self, group, target):
        key = f"{target.target_id}/{group.name}"
        return self._states.get(
            key, GroupState(group=group.name, target_id=target.target_id, status="absent")
        )


def _camel(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class CloudFormationProvider(ResourceGroupProvider):
    """
    Converges each resource group as one CloudFormation stack per target.

    Templates are rendered elsewhere; this provider only needs a template URL per
    group. Group inputs become stack parameters (stream_name -> StreamName) and
    stack outputs come back as group outputs (DatabaseName -> database_name).
    """

    IN_PROGRESS = "_IN_PROGRESS"
    FAILED_STATES = {
        "CREATE_FAILED", "ROLLBACK_COMPLETE", "ROLLBACK_FAILED",
        "UPDATE_ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_FAILED", "DELETE_FAILED",
    }

    def __init__(
        self,
        templates: Dict[str, str],
        role_name: Optional[str] = None,
        session: Optional[boto3.session.Session] = None,
    ):
        self.templates = templates
        self.role_name = role_name
        self.session = session or boto3.session.Session()
        self._clients: Dict[str, object] = {}

    def stack_name(self, group: ResourceGroup, target: DeploymentTarget) -> str:
        return f"{target.resource_prefix}-{group.name}-stack"

    def _client(self, target: DeploymentTarget):
        """CloudFormation client in the target's region and account"""
        key = f"{target.account_id}/{target.region}"
        if key in self._clients:
            return self._clients[key]

        if self.role_name:
            sts = self.session.client("sts")
            creds = sts.assume_role(
                RoleArn=f"arn:aws:iam::{target.account_id}:role/{self.role_name}",
                RoleSessionName=f"rollout-{target.target_id}",
            )["Credentials"]
            client = boto3.client(
                "cloudformation",
                region_name=target.region,
                aws_access_key_id=creds["AccessKeyId"],
                aws_secret_access_key=creds["SecretAccessKey"],
                aws_session_token=creds["SessionToken"],
            )
        else:
            client = self.session.client("cloudformation", region_name=target.region)

        self._clients[key] = client
        return client

    async def apply(self, group, target, inputs):
        template_url = self.templates.get(group.name)
        if not template_url:
            raise ApplyError(
                f"No template configured for group {group.name}",
                target_id=target.target_id, groups=[group.name],
            )

        client = await asyncio.to_thread(self._client, target)
        stack_name = self.stack_name(group, target)
        request = {
            "StackName": stack_name,
            "TemplateURL": template_url,
            "Parameters": [
                {"ParameterKey": _camel(name), "ParameterValue": value}
                for name, value in sorted(inputs.items())
                if name in group.inputs
            ],
            "Capabilities": ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
            "Tags": [{"Key": k, "Value": v} for k, v in target.tags.items()],
        }

        state = await self.describe(group, target)
        changed = True
        try:
            if state.status == "absent":
                logger.info(f"Creating stack {stack_name}")
                await asyncio.to_thread(client.create_stack, **request)
                waiter_name = "stack_create_complete"
            else:
                logger.info(f"Updating stack {stack_name}")
                await asyncio.to_thread(client.update_stack, **request)
                waiter_name = "stack_update_complete"

            waiter = client.get_waiter(waiter_name)
            await asyncio.to_thread(waiter.wait, StackName=stack_name)

        except ClientError as e:
            if "No updates are to be performed" in str(e):
                logger.info(f"Stack {stack_name} already up to date")
                changed = False
            else:
                raise ApplyError(
                    f"Stack {stack_name} failed: {e}",
                    target_id=target.target_id, groups=[group.name],
                ) from e
        except WaiterError as e:
            raise ApplyError(
                f"Stack {stack_name} did not converge: {e}",
                target_id=target.target_id, groups=[group.name],
            ) from e

        final = await self.describe(group, target)
        if final.status != "converged":
            raise ApplyError(
                f"Stack {stack_name} ended in {final.detail}",
                target_id=target.target_id, groups=[group.name],
            )

        return ApplyResult(
            group=group.name, target_id=target.target_id, outputs=final.outputs, changed=changed
        )

    @retry(
        retry=retry_if_exception_type(ClientError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True,
    )
    async def describe(self, group, target):
        client = await asyncio.to_thread(self._client, target)
        stack_name = self.stack_name(group, target)

        try:
            response = await asyncio.to_thread(client.describe_stacks, StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                return GroupState(group=group.name, target_id=target.target_id, status="absent")
            raise

        stack = response["Stacks"][0]
        stack_status = stack["StackStatus"]

        if stack_status.endswith(self.IN_PROGRESS):
            status = "in_progress"
        elif stack_status in self.FAILED_STATES:
            status = "failed"
        else:
            status = "converged"

        outputs = {
            _snake(o["OutputKey"]): o["OutputValue"]
            for o in stack.get("Outputs", [])
        }
        return GroupState(
            group=group.name,
            target_id=target.target_id,
            status=status,
            outputs=outputs,
            detail=stack_status,
        )
