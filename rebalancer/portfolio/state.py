"""
Current portfolio state.

Equity comes from the most recent stored snapshot and is never recomputed
as exposure minus borrow; stale borrow figures would make it drift.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence
import structlog

from rebalancer.portfolio.models import EquitySnapshot, Position

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PortfolioState:
    """Derived state of a portfolio at proposal time."""
    equity: float
    exposure: float
    leverage: float
    margin_ratio: float
    peak_equity: float
    position_values: dict[str, float] = field(default_factory=dict)
    position_quantities: dict[str, float] = field(default_factory=dict)


class StateCalculator:
    """
    Derives equity, exposure, leverage, margin ratio and peak equity.

    All divisions are guarded; nothing here raises.
    """

    def calculate(
        self,
        positions: Sequence[Position],
        latest_prices: dict[str, float],
        latest_snapshot: Optional[EquitySnapshot] = None,
        history: Sequence[EquitySnapshot] = (),
        initial_capital: float = 0.0,
    ) -> PortfolioState:
        """
        Calculate current portfolio state.

        Args:
            positions: Persisted positions
            latest_prices: asset_id -> latest close (average price used when missing)
            latest_snapshot: Most recent stored equity/peak-equity snapshot
            history: Older equity snapshots, any order
            initial_capital: Equity when no snapshot exists yet

        Returns:
            PortfolioState
        """
        exposure = 0.0
        position_values: dict[str, float] = {}
        position_quantities: dict[str, float] = {}

        for position in positions:
            price = latest_prices.get(position.asset_id) or position.avg_price
            value = position.quantity * price
            exposure += value
            position_values[position.symbol] = value
            position_quantities[position.symbol] = position.quantity

        equity = latest_snapshot.equity if latest_snapshot else initial_capital

        # Peak equity never decreases: stored peak, current equity, any historical equity
        peak_equity = equity
        if latest_snapshot and latest_snapshot.peak_equity:
            peak_equity = max(peak_equity, latest_snapshot.peak_equity)
        for snapshot in history:
            if snapshot.equity > peak_equity:
                peak_equity = snapshot.equity

        leverage = exposure / equity if equity > 0 else 0.0
        margin_ratio = equity / exposure if exposure > 0 else 1.0

        logger.debug(
            "portfolio_state_calculated",
            equity=equity,
            exposure=exposure,
            leverage=leverage,
            peak_equity=peak_equity,
        )

        return PortfolioState(
            equity=equity,
            exposure=exposure,
            leverage=leverage,
            margin_ratio=margin_ratio,
            peak_equity=peak_equity,
            position_values=position_values,
            position_quantities=position_quantities,
        )
