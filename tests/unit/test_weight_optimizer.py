"""
Weight optimizer tests.

Tests bounds, fallbacks, determinism and behavior on constructed histories.
"""

import math
import pytest

import numpy as np

from rebalancer.config import PortfolioConfiguration
from rebalancer.exceptions import InsufficientDataError
from rebalancer.portfolio.optimizer import WeightOptimizer, leveraged_sharpe
from rebalancer.portfolio.returns import ReturnStatistics, log_returns


def closes_from_returns(returns, start=100.0) -> list[float]:
    return [float(p) for p in start * np.exp(np.concatenate([[0.0], np.cumsum(returns)]))]


class TestLeveragedSharpe:
    """Tests for the leveraged Sharpe ratio."""

    def test_formula(self):
        """Test (annual return * L - rf) / (annual vol * L)."""
        weights = np.array([0.5, 0.5])
        means = np.array([0.001, 0.0005])
        cov = np.array([[0.0001, 0.0], [0.0, 0.0004]])

        daily_return = 0.00075
        daily_var = 0.25 * 0.0001 + 0.25 * 0.0004
        expected = (daily_return * 252 * 2.0 - 0.02) / (math.sqrt(daily_var * 252) * 2.0)

        assert leveraged_sharpe(weights, means, cov, 2.0, 252, 0.02) == pytest.approx(expected)

    def test_zero_volatility_is_zero(self):
        """Test zero variance gives 0 instead of dividing by zero."""
        weights = np.array([0.5, 0.5])
        cov = np.zeros((2, 2))

        assert leveraged_sharpe(weights, np.array([0.001, 0.001]), cov, 2.5, 252, 0.02) == 0.0


class TestReturnStatistics:
    """Tests for return estimation."""

    def test_log_returns_skip_non_positive(self):
        """Test pairs with a non-positive close are dropped."""
        returns = log_returns([100.0, 110.0, 0.0, 120.0, 132.0])

        assert len(returns) == 2
        assert returns[0] == pytest.approx(math.log(1.1))
        assert returns[1] == pytest.approx(math.log(1.1))

    def test_alignment_uses_most_recent_returns(self):
        """Test series are truncated to the shortest, keeping the newest."""
        stats = ReturnStatistics(min_observations=2)
        aligned = stats.align({
            "A": np.array([1.0, 2.0, 3.0, 4.0]),
            "B": np.array([10.0, 20.0]),
        })

        assert list(aligned["A"]) == [3.0, 4.0]
        assert list(aligned["B"]) == [10.0, 20.0]

    def test_shrinkage_applies_to_means_only(self):
        """Test shrunk means are raw means times the shrinkage factor."""
        np.random.seed(7)
        closes = {
            "A": closes_from_returns(np.random.normal(0.001, 0.01, 40)),
            "B": closes_from_returns(np.random.normal(0.0005, 0.02, 40)),
        }

        estimates = ReturnStatistics().estimate(closes, 0.6)

        assert estimates.observations == 40
        np.testing.assert_allclose(estimates.shrunk_means, estimates.raw_means * 0.6)
        assert estimates.covariance.shape == (2, 2)

    def test_covariance_is_sample_covariance(self):
        """Test covariance uses the n - 1 denominator."""
        np.random.seed(3)
        a = np.random.normal(0.0, 0.01, 30)
        b = np.random.normal(0.0, 0.02, 30)

        estimates = ReturnStatistics().estimate(
            {"A": closes_from_returns(a), "B": closes_from_returns(b)}, 1.0
        )

        aligned = np.vstack([log_returns(closes_from_returns(a)), log_returns(closes_from_returns(b))])
        np.testing.assert_allclose(estimates.covariance, np.cov(aligned, ddof=1))


class TestWeightOptimizer:
    """Tests for Sharpe-maximizing weights."""

    def setup_method(self):
        self.optimizer = WeightOptimizer()

    def test_weights_valid(self, synthetic_closes, default_config):
        """Test weights sum to 1 and respect bounds."""
        result = self.optimizer.optimize(synthetic_closes, default_config)

        weights = np.array(list(result.weights.values()))
        assert weights.sum() == pytest.approx(1.0)
        assert np.all(weights >= default_config.min_weight - 1e-9)
        assert np.all(weights <= default_config.max_weight + 1e-9)
        assert result.observations == 119

    def test_deterministic(self, synthetic_closes, default_config):
        """Test identical inputs give identical weights."""
        first = self.optimizer.optimize(synthetic_closes, default_config)
        second = WeightOptimizer().optimize(synthetic_closes, default_config)

        assert first.weights == second.weights

    def test_insufficient_assets_raises(self, default_config):
        """Test only one asset with 20+ returns raises InsufficientDataError."""
        np.random.seed(1)
        closes = {
            "SPY": closes_from_returns(np.random.normal(0, 0.01, 30)),
            "GLD": closes_from_returns(np.random.normal(0, 0.01, 10)),
        }

        with pytest.raises(InsufficientDataError) as exc_info:
            self.optimizer.optimize(closes, default_config)

        assert exc_info.value.qualifying_symbols == ["SPY"]

    def test_exactly_twenty_returns_qualify(self, default_config):
        """Test 21 closes (20 returns) is enough history."""
        np.random.seed(2)
        closes = {
            "SPY": closes_from_returns(np.random.normal(0, 0.01, 20)),
            "GLD": closes_from_returns(np.random.normal(0, 0.01, 20)),
        }

        result = self.optimizer.optimize(closes, default_config)

        assert result.observations == 20

    def test_nineteen_returns_do_not_qualify(self, default_config):
        """Test 20 closes (19 returns) is not enough history."""
        np.random.seed(2)
        closes = {
            "SPY": closes_from_returns(np.random.normal(0, 0.01, 19)),
            "GLD": closes_from_returns(np.random.normal(0, 0.01, 19)),
        }

        with pytest.raises(InsufficientDataError):
            self.optimizer.optimize(closes, default_config)

    def test_symmetric_assets_get_equal_weights(self):
        """Test two identical histories are weighted equally."""
        np.random.seed(11)
        series = closes_from_returns(np.random.normal(0.0005, 0.01, 60))
        config = PortfolioConfiguration(
            min_weight=0.05,
            max_weight=0.95,
            target_weights={"A": 0.5, "B": 0.5},
        )

        result = self.optimizer.optimize({"A": series, "B": list(series)}, config)

        assert result.weights["A"] == pytest.approx(0.5, abs=1e-6)
        assert result.weights["B"] == pytest.approx(0.5, abs=1e-6)

    def test_dominant_asset_gets_largest_weight(self):
        """Test a high-return, low-volatility asset is pushed toward max weight."""
        np.random.seed(5)
        closes = {
            "A": closes_from_returns(np.random.normal(0.002, 0.005, 120)),
            "B": closes_from_returns(np.random.normal(0.0, 0.02, 120)),
            "C": closes_from_returns(np.random.normal(0.0, 0.02, 120)),
        }
        config = PortfolioConfiguration(target_weights={"A": 0.4, "B": 0.3, "C": 0.3})

        result = self.optimizer.optimize(closes, config)

        assert result.weights["A"] == max(result.weights.values())
        assert result.weights["A"] > 0.34
        assert result.weights["A"] <= config.max_weight + 1e-9

    def test_dominant_asset_reaches_max_weight_on_60_days(self):
        """Test 60 days of a dominant asset drive it onto the max-weight bound."""
        np.random.seed(5)
        closes = {
            "A": closes_from_returns(np.random.normal(0.002, 0.005, 60)),
            "B": closes_from_returns(np.random.normal(0.0, 0.02, 60)),
            "C": closes_from_returns(np.random.normal(0.0, 0.02, 60)),
        }
        config = PortfolioConfiguration(target_weights={"A": 0.4, "B": 0.3, "C": 0.3})

        result = self.optimizer.optimize(closes, config)

        assert result.observations == 60
        assert result.weights["A"] == pytest.approx(0.4, abs=1e-3)
        assert sum(result.weights.values()) == pytest.approx(1.0)

    def test_infeasible_bounds_fall_back_to_equal_weights(self):
        """Test no feasible point gives equal weights."""
        np.random.seed(9)
        closes = {
            "A": closes_from_returns(np.random.normal(0.001, 0.01, 40)),
            "B": closes_from_returns(np.random.normal(0.0, 0.02, 40)),
        }
        # Two assets capped at 0.3 can never sum to 1
        config = PortfolioConfiguration(
            min_weight=0.05,
            max_weight=0.3,
            target_weights={"A": 0.5, "B": 0.5},
        )

        result = self.optimizer.optimize(closes, config)

        assert result.used_equal_weight_fallback
        assert result.weights["A"] == pytest.approx(0.5)
        assert result.weights["B"] == pytest.approx(0.5)

    def test_target_symbols_without_history_get_zero(self, synthetic_closes, default_config):
        """Test configured symbols missing from the history get weight 0."""
        target = dict(default_config.target_weights, NEW=0.0)

        result = self.optimizer.optimize(synthetic_closes, default_config, target)

        assert result.weights["NEW"] == 0.0
        assert sum(result.weights.values()) == pytest.approx(1.0)


class TestEnforceBounds:
    """Tests for post-search bound clamping."""

    def setup_method(self):
        self.optimizer = WeightOptimizer()

    def test_excess_moves_to_inside_weights(self):
        """Test weight above max is clamped and its excess redistributed."""
        weights = self.optimizer._enforce_bounds(np.array([0.6, 0.2, 0.2]), 0.05, 0.4)

        np.testing.assert_allclose(weights, [0.4, 0.3, 0.3])

    def test_deficit_taken_from_inside_weights(self):
        """Test weight below min is raised and the deficit taken from the rest."""
        weights = self.optimizer._enforce_bounds(np.array([0.0, 0.5, 0.5]), 0.1, 0.9)

        np.testing.assert_allclose(weights, [0.1, 0.45, 0.45])

    def test_in_bounds_unchanged(self):
        """Test valid weights pass through."""
        weights = self.optimizer._enforce_bounds(np.array([0.3, 0.3, 0.4]), 0.05, 0.4)

        np.testing.assert_allclose(weights, [0.3, 0.3, 0.4])
