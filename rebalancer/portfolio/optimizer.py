"""
Sharpe-ratio weight optimizer.

Finds target weights that maximize the leveraged Sharpe ratio of the
portfolio under per-asset box constraints:

    sharpe = (return_annual * leverage - risk_free_rate) / (vol_annual * leverage)

Mean returns are shrunk before entering the return term to reduce
overfitting to noisy history; the covariance matrix is not shrunk.
The search is a bounded Nelder-Mead simplex (no gradients needed), so the
result is fully deterministic for identical inputs.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence
import structlog

import numpy as np

from rebalancer.config import PortfolioConfiguration
from rebalancer.portfolio.returns import ReturnEstimates, ReturnStatistics
from rebalancer.portfolio.simplex import SimplexSearch

logger = structlog.get_logger(__name__)

# Slack allowed on weight bounds inside the objective
BOUND_TOLERANCE = 0.001


@dataclass(frozen=True)
class OptimizationResult:
    """Result of a weight optimization."""
    weights: dict[str, float]
    sharpe: float
    observations: int
    iterations: int
    converged: bool
    used_equal_weight_fallback: bool = False


def leveraged_sharpe(
    weights: np.ndarray,
    mean_returns: np.ndarray,
    covariance: np.ndarray,
    leverage: float,
    yearly_trading_days: int,
    risk_free_rate: float,
) -> float:
    """
    Annualized, leveraged Sharpe ratio of a weight vector.

    Returns 0 when leveraged volatility is not positive.
    """
    daily_return = float(weights @ mean_returns)
    daily_variance = float(weights @ covariance @ weights)

    annual_return = daily_return * yearly_trading_days
    annual_vol = math.sqrt(max(daily_variance, 0.0) * yearly_trading_days)

    leveraged_return = annual_return * leverage
    leveraged_vol = annual_vol * leverage

    if leveraged_vol <= 0:
        return 0.0
    return (leveraged_return - risk_free_rate) / leveraged_vol


class WeightOptimizer:
    """
    Computes Sharpe-maximizing weights under box constraints.

    Raises InsufficientDataError when fewer than two assets have
    min_observations returns; callers fall back to static weights.
    """

    def __init__(
        self,
        min_observations: int = 20,
        perturbation: float = 0.05,
        max_adjustment_passes: int = 10,
        search: Optional[SimplexSearch] = None,
    ):
        """
        Initialize weight optimizer.

        Args:
            min_observations: Minimum returns per asset
            perturbation: Per-dimension bump used to build the start simplex
            max_adjustment_passes: Passes of bound clamping after the search
            search: Simplex search (defaults to reflection 1, expansion 2,
                contraction 0.5, shrink 0.5, tolerance 1e-8, 500 iterations)
        """
        self.statistics = ReturnStatistics(min_observations=min_observations)
        self.perturbation = perturbation
        self.max_adjustment_passes = max_adjustment_passes
        self.search = search or SimplexSearch()

        logger.info(
            "weight_optimizer_initialized",
            min_observations=min_observations,
            max_iterations=self.search.max_iterations,
        )

    def optimize(
        self,
        closes_by_symbol: dict[str, Sequence[float]],
        config: PortfolioConfiguration,
        target_weights: Optional[dict[str, float]] = None,
    ) -> OptimizationResult:
        """
        Optimize weights from close-price history.

        Args:
            closes_by_symbol: symbol -> chronological close prices
            config: Weight bounds, leverage target, shrinkage, risk-free rate
            target_weights: Configured weights; symbols absent from the
                optimized set get weight 0 in the result

        Returns:
            OptimizationResult

        Raises:
            InsufficientDataError: if fewer than 2 assets have enough history
        """
        estimates = self.statistics.estimate(closes_by_symbol, config.mean_return_shrinkage)
        n = len(estimates.symbols)

        objective = self._objective(estimates, config)
        result = self.search.minimize(objective, self._initial_simplex(n, config.max_weight))

        weights = result.point
        fallback = False

        if not math.isfinite(result.value) or weights.sum() <= 0:
            logger.warning(
                "optimizer_result_invalid_using_equal_weights",
                best_value=result.value,
                symbols=estimates.symbols,
            )
            weights = np.full(n, 1.0 / n)
            fallback = True
        else:
            weights = weights / weights.sum()

        weights = self._enforce_bounds(weights, config.min_weight, config.max_weight)

        sharpe = leveraged_sharpe(
            weights,
            estimates.shrunk_means,
            estimates.covariance,
            config.leverage_target,
            config.yearly_trading_days,
            config.risk_free_rate,
        )

        optimized = {symbol: float(w) for symbol, w in zip(estimates.symbols, weights)}
        for symbol in (target_weights or {}):
            optimized.setdefault(symbol, 0.0)

        logger.info(
            "weights_optimized",
            weights={s: round(w, 4) for s, w in optimized.items()},
            sharpe=round(sharpe, 4),
            observations=estimates.observations,
            iterations=result.iterations,
            converged=result.converged,
        )

        return OptimizationResult(
            weights=optimized,
            sharpe=sharpe,
            observations=estimates.observations,
            iterations=result.iterations,
            converged=result.converged,
            used_equal_weight_fallback=fallback,
        )

    def _objective(self, estimates: ReturnEstimates, config: PortfolioConfiguration):
        """Negative leveraged Sharpe; math.inf outside the (slackened) bounds."""
        lower = config.min_weight - BOUND_TOLERANCE
        upper = config.max_weight + BOUND_TOLERANCE

        def negative_sharpe(point: np.ndarray) -> float:
            total = point.sum()
            if total <= 0:
                return math.inf

            weights = point / total
            if np.any(weights < lower) or np.any(weights > upper):
                return math.inf

            value = -leveraged_sharpe(
                weights,
                estimates.shrunk_means,
                estimates.covariance,
                config.leverage_target,
                config.yearly_trading_days,
                config.risk_free_rate,
            )
            return value if math.isfinite(value) else math.inf

        return negative_sharpe

    def _initial_simplex(self, n: int, max_weight: float) -> list[np.ndarray]:
        """Equal weights plus one vertex per dimension bumped by the perturbation."""
        equal = np.full(n, 1.0 / n)
        vertices = [equal.copy()]

        for i in range(n):
            point = equal.copy()
            point[i] = min(max_weight, point[i] + self.perturbation)
            vertices.append(point / point.sum())

        return vertices

    def _enforce_bounds(
        self,
        weights: np.ndarray,
        min_weight: float,
        max_weight: float,
    ) -> np.ndarray:
        """
        Clamp weights to [min_weight, max_weight] and redistribute.

        Each pass clamps out-of-bound weights and spreads the excess (or
        deficit) evenly over weights strictly inside the bounds. Ends with
        a normalization to sum exactly 1.
        """
        weights = weights.astype(float).copy()

        for _ in range(self.max_adjustment_passes):
            excess = 0.0
            adjusted = False

            for i, weight in enumerate(weights):
                if weight > max_weight:
                    excess += weight - max_weight
                    weights[i] = max_weight
                    adjusted = True
                elif weight < min_weight:
                    excess -= min_weight - weight
                    weights[i] = min_weight
                    adjusted = True

            if not adjusted:
                break

            if excess != 0:
                inside = (weights > min_weight) & (weights < max_weight)
                if inside.any():
                    weights[inside] += excess / inside.sum()

        total = weights.sum()
        if total <= 0:
            return np.full(len(weights), 1.0 / len(weights))
        return weights / total
