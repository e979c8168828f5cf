"""Equity and borrowing accounting."""

from rebalancer.accounting.equity_borrow import EquityBorrowAccountant, EquityBorrowBreakdown

__all__ = ["EquityBorrowAccountant", "EquityBorrowBreakdown"]
