"""
Multi-region rollout orchestrator and failover routing controller.
"""

__version__ = "0.1.0"
