"""
Error types raised by the rollout orchestrator.
"""

from typing import List, Optional


class RolloutError(Exception):
    """Base class for orchestrator errors"""


class ConfigurationError(RolloutError):
    """Configuration is missing or ambiguous; the rollout never starts"""


class GateNotFoundError(RolloutError, KeyError):
    """An approval signal referenced a gate that does not exist in the rollout"""

    def __init__(self, gate_id: str):
        super().__init__(gate_id)
        self.gate_id = gate_id

    def __str__(self) -> str:
        return f"Gate {self.gate_id} not found"


class ApplyError(RolloutError):
    """
    A resource group failed to converge.

    Carries the identifiers an operator needs to find the failure:
    the target, the wave and the failing group(s).
    """

    def __init__(
        self,
        message: str,
        target_id: Optional[str] = None,
        wave: Optional[str] = None,
        groups: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.target_id = target_id
        self.wave = wave
        self.groups = groups or []

    def __str__(self) -> str:
        location = ", ".join(
            f"{key}={value}"
            for key, value in (
                ("target", self.target_id),
                ("wave", self.wave),
                ("groups", ",".join(self.groups) or None),
            )
            if value
        )
        if location:
            return f"{self.message} ({location})"
        return self.message
