"""
Tests for the Gate Evaluator
"""

import asyncio

import pytest

from region_rollout.config import RolloutMode
from region_rollout.deployment.gates import GateCondition, GateEvaluator, GateStatus
from region_rollout.deployment.planner import Wave, data_identity_gate_id, dr_gate_id, plan_waves
from region_rollout.deployment.groups import Phase
from region_rollout.errors import ConfigurationError, GateNotFoundError


@pytest.fixture
def evaluator(dr_target, metrics):
    gates = GateEvaluator(metrics=metrics)
    gates.register(plan_waves(dr_target, RolloutMode.DISASTER_RECOVERY))
    return gates


class TestGateEvaluator:

    def test_pending_until_approved(self, evaluator, dr_target):
        waves = plan_waves(dr_target)  # fresh plan, not registered
        assert evaluator.can_proceed(waves[0])  # always-open

        gate = evaluator.get(dr_gate_id(dr_target))
        wave = Wave("w", Phase.CORE_INGEST, [], gates=[gate])
        assert not evaluator.can_proceed(wave)

        evaluator.approve(gate.gate_id, approved_by="alice")
        assert evaluator.can_proceed(wave)
        assert gate.status == GateStatus.APPROVED
        assert gate.approved_by == "alice"

    def test_double_approval_is_noop(self, evaluator, dr_target):
        gate_id = dr_gate_id(dr_target)
        first = evaluator.approve(gate_id, approved_by="alice")
        approved_at = first.approved_at

        second = evaluator.approve(gate_id, approved_by="bob")

        assert second is first
        assert second.status == GateStatus.APPROVED
        assert second.approved_by == "alice"
        assert second.approved_at == approved_at

    def test_unknown_gate(self, evaluator):
        with pytest.raises(GateNotFoundError) as exc_info:
            evaluator.approve("nope")
        assert exc_info.value.gate_id == "nope"
        assert isinstance(exc_info.value, KeyError)

    def test_approving_open_gate_changes_nothing(self):
        gate = GateCondition.always_open("t:storage")
        gates = GateEvaluator()
        gates.register([Wave("w", Phase.STORAGE, [], gates=[gate])])

        assert gates.approve("t:storage").status == GateStatus.OPEN
        assert gate.approved_by is None

    def test_conflicting_gate_ids_rejected(self):
        a = Wave("a", Phase.STORAGE, [], gates=[GateCondition.manual_approval("g", "one")])
        b = Wave("b", Phase.INSIGHTS, [], gates=[GateCondition.manual_approval("g", "two")])
        with pytest.raises(ConfigurationError):
            GateEvaluator().register([a, b])

    def test_pending_gates_and_metric(self, evaluator, dr_target, metrics):
        assert {g.gate_id for g in evaluator.pending_gates()} == {
            dr_gate_id(dr_target), data_identity_gate_id(dr_target),
        }
        assert metrics.registry.get_sample_value("rollout_pending_gates") == 2

        evaluator.approve(dr_gate_id(dr_target))
        assert metrics.registry.get_sample_value("rollout_pending_gates") == 1

    @pytest.mark.asyncio
    async def test_wait_for_resumes_after_approval(self, evaluator, dr_target):
        wave = plan_waves(dr_target, RolloutMode.DISASTER_RECOVERY)[0]
        wave.gates = [evaluator.get(dr_gate_id(dr_target))]

        waiter = asyncio.create_task(evaluator.wait_for(wave))
        await asyncio.sleep(0.01)
        assert not waiter.done()

        evaluator.approve(dr_gate_id(dr_target))
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_wait_for_is_cancellable(self, evaluator, dr_target):
        wave = Wave("w", Phase.STORAGE, [], gates=[evaluator.get(dr_gate_id(dr_target))])

        waiter = asyncio.create_task(evaluator.wait_for(wave))
        await asyncio.sleep(0.01)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert evaluator.get(dr_gate_id(dr_target)).status == GateStatus.PENDING
