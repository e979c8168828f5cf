"""
Leveraged Rebalancer - rebalance engine for a leveraged, periodically-funded portfolio.

Every proposal is recomputed from persisted state:
- Current equity, exposure and leverage
- Deploy signals (drawdown, weight deviation, realized volatility)
- Sharpe-maximizing target weights under box constraints
- Per-asset buy/sell deltas with an equity/borrow breakdown

Nothing changes until a caller explicitly accepts a proposal.
"""

__version__ = "0.1.0"
__author__ = "Rebalancer Team"
