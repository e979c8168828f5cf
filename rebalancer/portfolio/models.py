"""
Value types shared by the rebalance engine and its storage collaborators.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Asset:
    """A tradable asset."""
    asset_id: str
    symbol: str
    name: str = ""


@dataclass(frozen=True)
class Position:
    """A persisted portfolio position."""
    asset_id: str
    symbol: str
    quantity: float
    avg_price: float


@dataclass(frozen=True)
class EquitySnapshot:
    """Stored daily equity metrics for a portfolio."""
    date: date
    equity: float
    peak_equity: Optional[float] = None


@dataclass(frozen=True)
class TargetPosition:
    """Position values written back when a proposal is accepted."""
    asset_id: str
    quantity: float
    avg_price: float
    exposure: float
