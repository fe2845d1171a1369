"""
Gate Evaluator

Decides whether a wave may start. Manual approval gates only ever move from
PENDING to APPROVED, and only through an explicit approval signal. There is no
timeout: an unapproved gate blocks its pipeline until the rollout is cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..errors import ConfigurationError, GateNotFoundError

logger = logging.getLogger(__name__)


class GateKind(Enum):
    ALWAYS_OPEN = "always_open"
    MANUAL_APPROVAL = "manual_approval"


class GateStatus(Enum):
    OPEN = "open"
    PENDING = "pending"
    APPROVED = "approved"


@dataclass(eq=False)
class GateCondition:
    """A precondition on a wave"""
    gate_id: str
    kind: GateKind
    reason: str = ""
    status: GateStatus = GateStatus.OPEN
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    _cleared: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self):
        if self.kind == GateKind.MANUAL_APPROVAL:
            self.status = GateStatus.PENDING
        else:
            self.status = GateStatus.OPEN
            self._cleared.set()

    @classmethod
    def always_open(cls, gate_id: str) -> "GateCondition":
        return cls(gate_id=gate_id, kind=GateKind.ALWAYS_OPEN)

    @classmethod
    def manual_approval(cls, gate_id: str, reason: str) -> "GateCondition":
        return cls(gate_id=gate_id, kind=GateKind.MANUAL_APPROVAL, reason=reason)

    @property
    def is_cleared(self) -> bool:
        return self.status in (GateStatus.OPEN, GateStatus.APPROVED)

    def to_dict(self) -> Dict:
        return {
            "gate_id": self.gate_id,
            "kind": self.kind.value,
            "reason": self.reason,
            "status": self.status.value,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at,
        }


class GateEvaluator:
    """
    Tracks the gates of one rollout and answers whether a wave may proceed.

    Waves may share a gate object (the disaster-recovery gate covers every wave
    of a target); approving it once clears it everywhere.
    """

    def __init__(self, metrics=None):
        self._gates: Dict[str, GateCondition] = {}
        self.metrics = metrics
        self._released = False

    def register(self, waves: Iterable) -> None:
        """Record the gates of a planned wave list."""
        for wave in waves:
            for gate in wave.gates:
                known = self._gates.get(gate.gate_id)
                if known is not None and known is not gate:
                    raise ConfigurationError(f"Gate id {gate.gate_id} is used by two different gates")
                if known is None and gate.status == GateStatus.PENDING:
                    self._adjust_pending_metric(1)
                self._gates[gate.gate_id] = gate

    def get(self, gate_id: str) -> GateCondition:
        gate = self._gates.get(gate_id)
        if gate is None:
            raise GateNotFoundError(gate_id)
        return gate

    def can_proceed(self, wave) -> bool:
        """True iff every gate on the wave is always-open or approved"""
        return all(gate.is_cleared for gate in wave.gates)

    def approve(self, gate_id: str, approved_by: str = "operator") -> GateCondition:
        """
        Approve a manual gate.

        Approving an already-approved gate, or an always-open one, changes nothing.

        Raises:
            GateNotFoundError: if the gate is not part of this rollout
        """
        gate = self.get(gate_id)

        if gate.status == GateStatus.PENDING:
            gate.status = GateStatus.APPROVED
            gate.approved_by = approved_by
            gate.approved_at = datetime.utcnow().isoformat()
            gate._cleared.set()
            logger.info(f"Gate {gate_id} approved by {approved_by}")
            self._adjust_pending_metric(-1)
        else:
            logger.debug(f"Gate {gate_id} already {gate.status.value}, approval ignored")

        return gate

    async def wait_for(self, wave) -> None:
        """Suspend until every gate on the wave is cleared. Cancellable."""
        for gate in wave.gates:
            if not gate.is_cleared:
                logger.info(f"Wave {wave.name} waiting on gate {gate.gate_id}: {gate.reason}")
            await gate._cleared.wait()

    def pending_gates(self) -> List[GateCondition]:
        return [g for g in self._gates.values() if g.status == GateStatus.PENDING]

    def all_gates(self) -> List[GateCondition]:
        return list(self._gates.values())

    def release(self) -> None:
        """Stop counting this rollout's unapproved gates once nothing waits on them."""
        if not self._released:
            self._adjust_pending_metric(-len(self.pending_gates()))
            self._released = True

    def _adjust_pending_metric(self, delta: int):
        # The gauge is shared by every rollout of the process.
        if self.metrics and delta and not self._released:
            self.metrics.pending_gates.inc(delta)
