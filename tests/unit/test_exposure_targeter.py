"""
Exposure targeting tests.

Tests each leverage band rule and the boundaries between them.
"""

import pytest

from rebalancer.risk.exposure import ExposureDecision, ExposureTargeter


class TestExposureTargeter:
    """Tests for leverage band rules."""

    def test_below_min_targets_target_leverage(self):
        """Test leverage under the floor moves to equity * target."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(10000.0, 10000.0)

        assert result.decision == ExposureDecision.BELOW_MIN
        assert result.target_exposure == pytest.approx(25000.0)
        assert result.current_leverage == pytest.approx(1.0)

    def test_above_max_targets_max_leverage(self):
        """Test leverage over the ceiling moves to equity * max, not target."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(10000.0, 35000.0)

        assert result.decision == ExposureDecision.ABOVE_MAX
        assert result.target_exposure == pytest.approx(30000.0)

    def test_below_target_rule(self):
        """Test leverage between min and target is raised to target."""
        result = ExposureTargeter(2.0, 3.0, 4.0).target(10000.0, 25000.0)

        assert result.decision == ExposureDecision.BELOW_TARGET
        assert result.target_exposure == pytest.approx(30000.0)

    def test_at_min_below_target_raised_to_target(self):
        """Test leverage equal to a min below target is raised to target."""
        result = ExposureTargeter(2.5, 3.0, 4.0).target(10000.0, 25000.0)

        assert result.decision == ExposureDecision.BELOW_TARGET
        assert result.target_exposure == pytest.approx(30000.0)

    def test_hold_between_target_and_max(self):
        """Test leverage between target and max keeps current exposure."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(10000.0, 27000.0)

        assert result.decision == ExposureDecision.HOLD
        assert result.target_exposure == 27000.0

    def test_exactly_at_min_holds(self):
        """Test leverage equal to min (and target) is held."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(10000.0, 25000.0)

        assert result.decision == ExposureDecision.HOLD
        assert result.target_exposure == 25000.0

    def test_exactly_at_max_holds(self):
        """Test leverage equal to max is held."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(10000.0, 30000.0)

        assert result.decision == ExposureDecision.HOLD
        assert result.target_exposure == 30000.0

    def test_zero_equity(self):
        """Test zero equity gives zero leverage and zero target."""
        result = ExposureTargeter(2.5, 2.5, 3.0).target(0.0, 0.0)

        assert result.current_leverage == 0.0
        assert result.target_exposure == 0.0
        assert result.decision == ExposureDecision.BELOW_MIN
