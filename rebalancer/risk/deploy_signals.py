"""
Deploy signal evaluation.

Decides whether capital should be redeployed, based on:
- Drawdown from peak equity (deep drawdown = buy the dip)
- Weight deviation from the target allocation
- Realized volatility of equity (calm market = safe to deploy)

Any trigger deploys at most gradual_deploy_factor of the gap. The fraction
is not scaled by how far past its threshold a signal is.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence
import structlog

import numpy as np

from rebalancer.config import PortfolioConfiguration
from rebalancer.portfolio.models import EquitySnapshot
from rebalancer.portfolio.returns import log_returns
from rebalancer.portfolio.state import PortfolioState

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeploySignals:
    """Deploy signals for a portfolio."""
    drawdown: float                        # <= 0, from peak
    weight_deviation: float                # >= 0, max abs deviation
    realized_volatility: Optional[float]   # Annualized, None without history

    drawdown_triggered: bool
    weight_deviation_triggered: bool
    volatility_triggered: bool

    deploy_fraction: float                 # In [0, gradual_deploy_factor]

    @property
    def any_triggered(self) -> bool:
        return self.drawdown_triggered or self.weight_deviation_triggered or self.volatility_triggered


class DeploySignalEvaluator:
    """
    Computes drawdown, weight-deviation and volatility signals.

    Every trigger is evaluated and reported independently; the deploy
    fraction is the same for any trigger.
    """

    def evaluate(
        self,
        state: PortfolioState,
        equity_history: Sequence[EquitySnapshot],
        target_weights: dict[str, float],
        config: PortfolioConfiguration,
    ) -> DeploySignals:
        """
        Evaluate deploy signals.

        Args:
            state: Current portfolio state
            equity_history: Equity snapshots, newest first
            target_weights: symbol -> target weight
            config: Deploy thresholds

        Returns:
            DeploySignals
        """
        drawdown = self.calculate_drawdown(state.equity, state.peak_equity)
        drawdown_triggered = drawdown <= -config.drawdown_redeploy_threshold

        weight_deviation = self.calculate_weight_deviation(
            state.position_values, state.exposure, target_weights
        )
        weight_deviation_triggered = weight_deviation >= config.weight_deviation_threshold

        realized_volatility = self.calculate_realized_volatility(
            equity_history,
            config.volatility_lookback_days,
            config.yearly_trading_days,
        )
        volatility_triggered = (
            realized_volatility is not None
            and realized_volatility <= config.volatility_redeploy_threshold
        )

        if drawdown_triggered:
            candidate_fraction = 1.0
        elif weight_deviation_triggered or volatility_triggered:
            candidate_fraction = 1.0
        else:
            candidate_fraction = 0.0

        deploy_fraction = (
            min(candidate_fraction, config.gradual_deploy_factor)
            if candidate_fraction > 0
            else 0.0
        )

        signals = DeploySignals(
            drawdown=drawdown,
            weight_deviation=weight_deviation,
            realized_volatility=realized_volatility,
            drawdown_triggered=drawdown_triggered,
            weight_deviation_triggered=weight_deviation_triggered,
            volatility_triggered=volatility_triggered,
            deploy_fraction=deploy_fraction,
        )

        if signals.any_triggered:
            logger.info(
                "deploy_signal_triggered",
                drawdown=round(drawdown, 4),
                weight_deviation=round(weight_deviation, 4),
                realized_volatility=realized_volatility,
                drawdown_triggered=drawdown_triggered,
                weight_deviation_triggered=weight_deviation_triggered,
                volatility_triggered=volatility_triggered,
                deploy_fraction=deploy_fraction,
            )

        return signals

    @staticmethod
    def calculate_drawdown(equity: float, peak_equity: float) -> float:
        """Shortfall from peak as a negative fraction (0 without a positive peak)."""
        return equity / peak_equity - 1 if peak_equity > 0 else 0.0

    @staticmethod
    def calculate_weight_deviation(
        position_values: dict[str, float],
        exposure: float,
        target_weights: dict[str, float],
    ) -> float:
        """Largest absolute gap between current and target weight."""
        if exposure <= 0:
            return 0.0

        deviation = 0.0
        for symbol, target_weight in target_weights.items():
            current_weight = position_values.get(symbol, 0.0) / exposure
            deviation = max(deviation, abs(current_weight - target_weight))

        return deviation

    @staticmethod
    def calculate_realized_volatility(
        equity_history: Sequence[EquitySnapshot],
        lookback_days: int,
        yearly_trading_days: int = 252,
    ) -> Optional[float]:
        """
        Annualized volatility of daily equity log returns.

        Uses the newest lookback_days + 1 snapshots. Returns None when no
        valid return exists; a single return has zero volatility.
        """
        window = list(equity_history)[:lookback_days + 1]
        equity_values = [snapshot.equity for snapshot in reversed(window)]

        returns = log_returns(equity_values)

        if len(returns) == 0:
            return None
        if len(returns) == 1:
            return 0.0

        daily_vol = float(np.std(returns, ddof=1))
        return daily_vol * math.sqrt(yearly_trading_days)
