"""
Stage Executor

Walks one target's waves in order: wait for the wave's gates, apply every group
of the wave concurrently, and continue only if all of them succeeded. A failure
halts this target at the failing wave; earlier waves are left in place and other
targets are not affected.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..errors import ApplyError
from ..logger import RolloutLoggerAdapter
from .gates import GateEvaluator
from .groups import ResourceGroup
from .planner import Wave
from .providers import ApplyResult, ResourceGroupProvider
from .targets import DeploymentTarget

logger = logging.getLogger(__name__)


class TargetStatus(Enum):
    PENDING = "pending"
    WAITING_APPROVAL = "waiting_approval"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TargetResult:
    """Progress and outcome of one target's pipeline"""
    target: DeploymentTarget
    revision: Optional[str] = None
    status: TargetStatus = TargetStatus.PENDING
    current_wave: Optional[str] = None
    waves_completed: List[str] = field(default_factory=list)
    failed_wave: Optional[str] = None
    failed_groups: List[str] = field(default_factory=list)
    error: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def target_id(self) -> str:
        return self.target.target_id

    @property
    def finished(self) -> bool:
        return self.status in (TargetStatus.SUCCEEDED, TargetStatus.FAILED, TargetStatus.CANCELLED)

    def to_dict(self) -> Dict:
        return {
            "target_id": self.target_id,
            "environment": self.target.environment,
            "region": self.target.region,
            "account_id": self.target.account_id,
            "revision": self.revision,
            "status": self.status.value,
            "current_wave": self.current_wave,
            "waves_completed": list(self.waves_completed),
            "failed_wave": self.failed_wave,
            "failed_groups": list(self.failed_groups),
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class StageExecutor:
    """Drives resource group providers for one target, wave by wave."""

    def __init__(
        self,
        provider: ResourceGroupProvider,
        gates: GateEvaluator,
        metrics=None,
    ):
        self.provider = provider
        self.gates = gates
        self.metrics = metrics

    async def run(
        self,
        target: DeploymentTarget,
        waves: List[Wave],
        result: Optional[TargetResult] = None,
    ) -> TargetResult:
        """
        Run a target's pipeline to completion, failure or cancellation.

        Cancellation is re-raised after the result has been marked CANCELLED.
        """
        result = result or TargetResult(target=target)
        result.started_at = datetime.utcnow().isoformat()
        log = RolloutLoggerAdapter(logger, {"target": target.target_id, "revision": result.revision})

        try:
            for wave in waves:
                result.current_wave = wave.name

                if not self.gates.can_proceed(wave):
                    result.status = TargetStatus.WAITING_APPROVAL
                    log.info(f"Waiting for approval before {wave.name}")
                    await self.gates.wait_for(wave)

                result.status = TargetStatus.APPLYING
                await self._apply_wave(target, wave, result.outputs, log)
                result.waves_completed.append(wave.name)

            result.current_wave = None
            result.status = TargetStatus.SUCCEEDED
            log.info(f"Rollout of {target.target_id} succeeded ({len(waves)} waves)")

        except ApplyError as e:
            result.status = TargetStatus.FAILED
            result.failed_wave = e.wave
            result.failed_groups = list(e.groups)
            result.error = str(e)
            log.error(f"Rollout of {target.target_id} halted: {e}")

        except asyncio.CancelledError:
            result.status = TargetStatus.CANCELLED
            log.warning(f"Rollout of {target.target_id} cancelled at {result.current_wave}")
            raise

        finally:
            result.completed_at = datetime.utcnow().isoformat()
            if self.metrics and result.finished:
                self.metrics.record_target(result.status.value)

        return result

    async def _apply_wave(
        self,
        target: DeploymentTarget,
        wave: Wave,
        outputs: Dict[str, str],
        log: logging.LoggerAdapter,
    ) -> None:
        """Apply all groups of a wave concurrently; raise ApplyError if any failed."""
        log.info(f"Applying {wave.name}: {', '.join(wave.group_names)}")

        results = await asyncio.gather(
            *[
                self._apply_group(target, wave, group, {name: outputs[name] for name in group.inputs})
                for group in wave.groups
            ],
            return_exceptions=True,
        )

        failures = []
        wave_outputs: Dict[str, str] = {}
        for group, outcome in zip(wave.groups, results):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failures.append((group.name, outcome))
                continue
            wave_outputs.update(outcome.outputs)

        if failures:
            for name, error in failures:
                log.error(f"Group {name} failed in {wave.name}: {error}")
            details = "; ".join(getattr(error, "message", str(error)) for _, error in failures)
            raise ApplyError(
                f"{len(failures)} of {len(wave.groups)} group(s) failed: {details}",
                target_id=target.target_id,
                wave=wave.name,
                groups=[name for name, _ in failures],
            )

        # Outputs from this wave become inputs for the next ones.
        outputs.update(wave_outputs)

    async def _apply_group(
        self,
        target: DeploymentTarget,
        wave: Wave,
        group: ResourceGroup,
        inputs: Dict[str, str],
    ) -> ApplyResult:
        start = time.monotonic()
        success = False
        try:
            result = await self.provider.apply(group, target, inputs)

            missing = [name for name in group.outputs if name not in result.outputs]
            if missing:
                raise ApplyError(
                    f"Group {group.name} did not report output(s): {', '.join(missing)}",
                    target_id=target.target_id, wave=wave.name, groups=[group.name],
                )

            success = True
            return result

        except ApplyError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ApplyError(
                f"Group {group.name} raised {type(e).__name__}: {e}",
                target_id=target.target_id, wave=wave.name, groups=[group.name],
            ) from e

        finally:
            if self.metrics:
                self.metrics.record_apply(wave.phase.value, success, time.monotonic() - start)
