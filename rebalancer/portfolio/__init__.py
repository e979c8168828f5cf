"""
Portfolio module.

Handles:
- Current state (equity, exposure, leverage, margin ratio)
- Return statistics and Sharpe-maximizing weights
- Per-asset target positions
"""

from rebalancer.portfolio.allocator import PositionDeltaCalculator, ProposalPosition, TradeAction
from rebalancer.portfolio.models import Asset, EquitySnapshot, Position, TargetPosition
from rebalancer.portfolio.optimizer import OptimizationResult, WeightOptimizer
from rebalancer.portfolio.state import PortfolioState, StateCalculator

__all__ = [
    "Asset",
    "EquitySnapshot",
    "OptimizationResult",
    "PortfolioState",
    "Position",
    "PositionDeltaCalculator",
    "ProposalPosition",
    "StateCalculator",
    "TargetPosition",
    "TradeAction",
    "WeightOptimizer",
]
