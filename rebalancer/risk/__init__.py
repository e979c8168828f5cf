"""
Risk module.

Handles:
- Deploy signals (drawdown, weight deviation, realized volatility)
- Leverage band exposure targeting
"""

from rebalancer.risk.deploy_signals import DeploySignalEvaluator, DeploySignals
from rebalancer.risk.exposure import ExposureDecision, ExposureTarget, ExposureTargeter

__all__ = [
    "DeploySignalEvaluator",
    "DeploySignals",
    "ExposureDecision",
    "ExposureTarget",
    "ExposureTargeter",
]
