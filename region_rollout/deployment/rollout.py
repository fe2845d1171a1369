"""
Rollout Coordinator

Entry point for a rollout: plans every target from the current configuration,
runs one pipeline task per target, and routes operator approvals and
cancellations to the right pipeline. Rollouts never touch hosted zones or DNS
records; those belong to the failover controller.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..config import PlatformConfig
from ..errors import GateNotFoundError, RolloutError
from .executor import StageExecutor, TargetResult, TargetStatus
from .gates import GateCondition, GateEvaluator
from .planner import Wave, plan_waves
from .providers import ResourceGroupProvider
from .targets import resolve_from_config

logger = logging.getLogger(__name__)


@dataclass
class Rollout:
    """One rollout of a source revision across every target"""
    rollout_id: str
    revision: str
    gates: GateEvaluator
    results: Dict[str, TargetResult] = field(default_factory=dict)
    waves: Dict[str, List[Wave]] = field(default_factory=dict)
    tasks: Dict[str, asyncio.Task] = field(default_factory=dict, repr=False)
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def status(self) -> str:
        statuses = [r.status for r in self.results.values()]
        if not all(r.finished for r in self.results.values()):
            return "running"
        if any(s == TargetStatus.FAILED for s in statuses):
            return "failed"
        if any(s == TargetStatus.CANCELLED for s in statuses):
            return "cancelled"
        return "succeeded"

    def gates_for(self, target_id: str) -> List[GateCondition]:
        seen = {}
        for wave in self.waves.get(target_id, []):
            for gate in wave.gates:
                seen[gate.gate_id] = gate
        return list(seen.values())

    def to_dict(self) -> Dict:
        return {
            "rollout_id": self.rollout_id,
            "revision": self.revision,
            "status": self.status,
            "created_at": self.created_at,
            "targets": [r.to_dict() for r in self.results.values()],
            "pending_gates": [g.to_dict() for g in self.gates.pending_gates()],
        }


class RolloutCoordinator:
    """
    Multi-target rollout coordinator

    Each target runs in its own task; nothing is shared between targets except
    the read-only configuration, so a failure or a pending approval in one target
    never holds up another.
    """

    def __init__(
        self,
        config: PlatformConfig,
        provider: ResourceGroupProvider,
        metrics=None,
        alert_manager=None,
    ):
        self.config = config
        self.provider = provider
        self.metrics = metrics
        self.alert_manager = alert_manager
        self.rollouts: Dict[str, Rollout] = {}
        self._latest: Optional[str] = None

    def plan(self, revision: str) -> Rollout:
        """
        Resolve targets and plan their waves without starting anything.

        Raises:
            ConfigurationError: if any target cannot be planned
        """
        rollout = Rollout(
            rollout_id=f"rollout-{uuid.uuid4().hex[:12]}",
            revision=revision,
            gates=GateEvaluator(metrics=self.metrics),
        )

        for target in resolve_from_config(self.config):
            waves = plan_waves(target, self.config.mode_for(target.region))
            rollout.waves[target.target_id] = waves
            rollout.results[target.target_id] = TargetResult(target=target, revision=revision)
            rollout.gates.register(waves)

        return rollout

    async def trigger(self, revision: str) -> Rollout:
        """Plan and start a rollout; returns as soon as every pipeline is running."""
        rollout = self.plan(revision)
        self.rollouts[rollout.rollout_id] = rollout
        self._latest = rollout.rollout_id

        executor = StageExecutor(self.provider, rollout.gates, metrics=self.metrics)
        for target_id, result in rollout.results.items():
            task = asyncio.create_task(
                self._run_target(rollout, executor, result),
                name=f"{rollout.rollout_id}:{target_id}",
            )
            task.add_done_callback(lambda t, tid=target_id: self._settle(rollout, tid))
            rollout.tasks[target_id] = task

        pending = rollout.gates.pending_gates()
        logger.info(
            f"Started {rollout.rollout_id} for revision {revision}: "
            f"{len(rollout.results)} targets, {len(pending)} approval gate(s) pending"
        )

        if self.alert_manager:
            for gate in pending:
                await self.alert_manager.notify(
                    name="ApprovalRequired",
                    severity="info",
                    region=None,
                    message=gate.reason,
                    labels={"rollout": rollout.rollout_id, "gate": gate.gate_id},
                )
        return rollout

    async def _run_target(self, rollout: Rollout, executor: StageExecutor, result: TargetResult):
        try:
            await executor.run(result.target, rollout.waves[result.target_id], result=result)
        except asyncio.CancelledError:
            return result

        if result.status == TargetStatus.FAILED and self.alert_manager:
            await self.alert_manager.notify(
                name="RolloutTargetFailed",
                severity="warning",
                region=result.target.region,
                message=f"Rollout {rollout.rollout_id} of {rollout.revision} halted in "
                        f"{result.failed_wave}: {result.error}",
                labels={
                    "environment": result.target.environment,
                    "target": result.target_id,
                    "wave": result.failed_wave or "",
                },
            )
        return result

    def _settle(self, rollout: Rollout, target_id: str):
        """Bookkeeping once a pipeline task is done."""
        task = rollout.tasks.get(target_id)
        if task is None or not task.done():
            return

        # A task cancelled before its first step never ran the executor.
        result = rollout.results[target_id]
        if task.cancelled() and not result.finished:
            result.status = TargetStatus.CANCELLED
            result.completed_at = datetime.utcnow().isoformat()
            logger.warning(f"Rollout of {target_id} cancelled before it started")
            if self.metrics:
                self.metrics.record_target(result.status.value)

        if all(t.done() for t in rollout.tasks.values()):
            rollout.gates.release()

    async def wait(self, rollout_id: Optional[str] = None) -> Rollout:
        """Wait until every pipeline of a rollout has finished."""
        rollout = self.get(rollout_id)
        await asyncio.gather(*rollout.tasks.values(), return_exceptions=True)
        for target_id in rollout.tasks:
            self._settle(rollout, target_id)
        return rollout

    async def run(self, revision: str) -> Rollout:
        rollout = await self.trigger(revision)
        return await self.wait(rollout.rollout_id)

    def get(self, rollout_id: Optional[str] = None) -> Rollout:
        rollout_id = rollout_id or self._latest
        if rollout_id is None or rollout_id not in self.rollouts:
            raise RolloutError(f"Rollout {rollout_id} not found")
        return self.rollouts[rollout_id]

    def approve(
        self,
        target_id: str,
        gate_id: str,
        approved_by: str = "operator",
        rollout_id: Optional[str] = None,
    ) -> GateCondition:
        """
        Operator approval signal for one gate of one target.

        Raises:
            GateNotFoundError: if the gate does not guard one of the target's waves
        """
        rollout = self.get(rollout_id)
        if gate_id not in {g.gate_id for g in rollout.gates_for(target_id)}:
            raise GateNotFoundError(gate_id)
        return rollout.gates.approve(gate_id, approved_by=approved_by)

    def cancel(self, rollout_id: Optional[str] = None, target_id: Optional[str] = None) -> List[str]:
        """Cancel one target's pipeline, or every unfinished pipeline of the rollout."""
        rollout = self.get(rollout_id)
        target_ids = [target_id] if target_id else list(rollout.tasks)

        cancelled = []
        for tid in target_ids:
            task = rollout.tasks.get(tid)
            if task is None:
                raise RolloutError(f"Target {tid} is not part of {rollout.rollout_id}")
            if not task.done():
                task.cancel()
                cancelled.append(tid)

        logger.info(f"Cancelled {len(cancelled)} pipeline(s) of {rollout.rollout_id}")
        return cancelled
