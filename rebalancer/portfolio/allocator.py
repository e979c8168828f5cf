"""
Position delta calculation.

Converts a target exposure and target weights into per-asset target
quantities and buy/sell/hold deltas.

Assets with zero weight or without a known price are left out of the
result entirely; a fully de-weighted asset gets no explicit sell delta.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence
import structlog

from rebalancer.portfolio.models import Asset
from rebalancer.portfolio.state import PortfolioState

logger = structlog.get_logger(__name__)

# Quantity changes at or below this are HOLD
QUANTITY_EPSILON = 0.0001


class TradeAction(str, Enum):
    """Direction of a position change."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class ProposalPosition:
    """Target position for one asset."""
    asset_id: str
    asset_symbol: str
    asset_name: str
    current_quantity: float
    current_value: float
    target_quantity: float
    target_value: float
    delta_quantity: float
    delta_value: float  # Positive = buy, negative = sell
    target_weight: float
    current_weight: float
    current_price: float
    action: TradeAction


def classify_delta(delta_quantity: float) -> TradeAction:
    """BUY above +epsilon, SELL below -epsilon, HOLD otherwise."""
    if delta_quantity > QUANTITY_EPSILON:
        return TradeAction.BUY
    if delta_quantity < -QUANTITY_EPSILON:
        return TradeAction.SELL
    return TradeAction.HOLD


class PositionDeltaCalculator:
    """
    Per-asset targets from target exposure and weights.

    target_value = target_exposure * weight
    target_quantity = target_value / price
    """

    def calculate(
        self,
        state: PortfolioState,
        target_exposure: float,
        weights: dict[str, float],
        assets: Sequence[Asset],
        latest_prices: dict[str, float],
    ) -> list[ProposalPosition]:
        """
        Calculate target positions.

        Args:
            state: Current portfolio state
            target_exposure: Total exposure to reach
            weights: symbol -> target weight
            assets: Candidate assets, in output order
            latest_prices: asset_id -> latest close

        Returns:
            List of ProposalPosition for assets with nonzero weight and a positive price
        """
        positions = []

        for asset in assets:
            weight = weights.get(asset.symbol, 0.0)
            if weight == 0:
                continue

            price = latest_prices.get(asset.asset_id) or 0.0
            if price <= 0:
                logger.warning("asset_price_missing_skipped", symbol=asset.symbol)
                continue

            current_value = state.position_values.get(asset.symbol, 0.0)
            current_quantity = state.position_quantities.get(asset.symbol, 0.0)
            current_weight = current_value / state.exposure if state.exposure > 0 else 0.0

            target_value = target_exposure * weight
            target_quantity = target_value / price

            delta_quantity = target_quantity - current_quantity

            positions.append(ProposalPosition(
                asset_id=asset.asset_id,
                asset_symbol=asset.symbol,
                asset_name=asset.name,
                current_quantity=current_quantity,
                current_value=current_value,
                target_quantity=target_quantity,
                target_value=target_value,
                delta_quantity=delta_quantity,
                delta_value=target_value - current_value,
                target_weight=weight,
                current_weight=current_weight,
                current_price=price,
                action=classify_delta(delta_quantity),
            ))

        return positions
