"""
Equity/borrow accounting for a rebalance.

exposure = equity + borrowed amount. A rebalance never changes equity
(contributions are booked to equity before a proposal is computed), so
every change in exposure is a change in borrowing.
"""

from dataclasses import dataclass
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EquityBorrowBreakdown:
    """How an exposure change is funded."""
    equity_used: float
    borrow_increase: float  # Negative when borrowing is paid down

    @property
    def net_exposure_change(self) -> float:
        return self.equity_used + self.borrow_increase


class EquityBorrowAccountant:
    """Splits an exposure change into equity-funded and borrowed parts."""

    def breakdown(self, current_exposure: float, target_exposure: float) -> EquityBorrowBreakdown:
        """
        Calculate the equity/borrow breakdown.

        Args:
            current_exposure: Exposure before the rebalance
            target_exposure: Exposure after the rebalance

        Returns:
            EquityBorrowBreakdown with equity_used always 0
        """
        net_exposure_change = target_exposure - current_exposure

        equity_used = 0.0
        borrow_increase = 0.0

        if net_exposure_change > 0:
            borrow_increase = net_exposure_change
        elif net_exposure_change < 0:
            borrow_increase = net_exposure_change

        logger.debug(
            "equity_borrow_breakdown",
            net_exposure_change=net_exposure_change,
            borrow_increase=borrow_increase,
        )

        return EquityBorrowBreakdown(equity_used=equity_used, borrow_increase=borrow_increase)
