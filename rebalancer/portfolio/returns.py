"""
Return statistics for weight optimization.

Turns close-price series into daily log returns, aligns them to a common
window and estimates mean returns and the covariance matrix.
"""

from dataclasses import dataclass
from typing import Sequence
import structlog

import numpy as np
import pandas as pd

from rebalancer.exceptions import InsufficientDataError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReturnEstimates:
    """Per-asset return estimates over an aligned window."""
    symbols: list[str]
    raw_means: np.ndarray
    shrunk_means: np.ndarray  # Only used in the objective's return term
    covariance: np.ndarray    # Estimated from unshrunk returns
    observations: int


def log_returns(closes: Sequence[float]) -> np.ndarray:
    """
    Daily log returns of a chronological close series.

    Adjacent pairs with a non-positive close are skipped.
    """
    prices = np.asarray(closes, dtype=float)
    if prices.size < 2:
        return np.empty(0)

    previous = prices[:-1]
    current = prices[1:]
    valid = (previous > 0) & (current > 0)

    return np.log(current[valid] / previous[valid])


class ReturnStatistics:
    """
    Estimates mean returns and covariance from price history.

    Assets with fewer than min_observations returns are discarded;
    at least min_assets must remain.
    """

    def __init__(
        self,
        min_observations: int = 20,
        min_assets: int = 2,
    ):
        """
        Initialize return statistics.

        Args:
            min_observations: Minimum returns per asset
            min_assets: Minimum qualifying assets
        """
        self.min_observations = min_observations
        self.min_assets = min_assets

    def qualifying_returns(
        self,
        closes_by_symbol: dict[str, Sequence[float]],
    ) -> dict[str, np.ndarray]:
        """
        Log returns for every asset with enough history.

        Raises:
            InsufficientDataError: if fewer than min_assets qualify
        """
        returns_data = {}

        for symbol, closes in closes_by_symbol.items():
            returns = log_returns(closes)

            if len(returns) >= self.min_observations:
                returns_data[symbol] = returns
            else:
                logger.debug(
                    "asset_history_too_short",
                    symbol=symbol,
                    returns=len(returns),
                    required=self.min_observations,
                )

        if len(returns_data) < self.min_assets:
            raise InsufficientDataError(list(returns_data), self.min_assets)

        return returns_data

    def align(self, returns_by_symbol: dict[str, np.ndarray]) -> pd.DataFrame:
        """
        Align return series to the shortest length.

        Each column holds the most recent m returns of one asset.
        """
        length = min(len(r) for r in returns_by_symbol.values())

        return pd.DataFrame({
            symbol: returns[-length:] for symbol, returns in returns_by_symbol.items()
        })

    def estimate(
        self,
        closes_by_symbol: dict[str, Sequence[float]],
        mean_return_shrinkage: float,
    ) -> ReturnEstimates:
        """
        Estimate shrunk means and sample covariance (ddof=1).

        Args:
            closes_by_symbol: symbol -> chronological close prices
            mean_return_shrinkage: Damping factor applied to mean returns

        Returns:
            ReturnEstimates
        """
        aligned = self.align(self.qualifying_returns(closes_by_symbol))

        raw_means = aligned.mean().to_numpy()
        covariance = aligned.cov(ddof=1).to_numpy()

        logger.debug(
            "return_statistics_estimated",
            symbols=list(aligned.columns),
            observations=len(aligned),
        )

        return ReturnEstimates(
            symbols=list(aligned.columns),
            raw_means=raw_means,
            shrunk_means=raw_means * mean_return_shrinkage,
            covariance=covariance,
            observations=len(aligned),
        )
