"""
Exposure targeting.

Converts current leverage and the configured leverage bounds into a
target total exposure.
"""

from dataclasses import dataclass
from enum import Enum
import structlog

logger = structlog.get_logger(__name__)


class ExposureDecision(Enum):
    """Which leverage rule set the target exposure."""
    BELOW_MIN = "below_min"          # Overshoot past the floor to the target
    ABOVE_MAX = "above_max"          # Cut back to the ceiling
    BELOW_TARGET = "below_target"    # In range, move up to the target
    HOLD = "hold"                    # At or above target, within range


@dataclass(frozen=True)
class ExposureTarget:
    """Target exposure and the rule that produced it."""
    target_exposure: float
    current_leverage: float
    decision: ExposureDecision


class ExposureTargeter:
    """
    Maps current leverage to a target exposure.

    Rules, evaluated in order:
    1. leverage < min     -> equity * target
    2. leverage > max     -> equity * max
    3. leverage < target  -> equity * target
    4. otherwise          -> current exposure
    """

    def __init__(
        self,
        leverage_min: float,
        leverage_target: float,
        leverage_max: float,
    ):
        """
        Initialize exposure targeter.

        Args:
            leverage_min: Leverage floor
            leverage_target: Healthy leverage level
            leverage_max: Leverage ceiling
        """
        self.leverage_min = leverage_min
        self.leverage_target = leverage_target
        self.leverage_max = leverage_max

    def target(self, equity: float, current_exposure: float) -> ExposureTarget:
        """
        Calculate target exposure.

        Args:
            equity: Current equity
            current_exposure: Current total market value of positions

        Returns:
            ExposureTarget
        """
        current_leverage = current_exposure / equity if equity > 0 else 0.0

        if current_leverage < self.leverage_min:
            target_exposure = equity * self.leverage_target
            decision = ExposureDecision.BELOW_MIN
        elif current_leverage > self.leverage_max:
            target_exposure = equity * self.leverage_max
            decision = ExposureDecision.ABOVE_MAX
        elif current_leverage < self.leverage_target:
            target_exposure = equity * self.leverage_target
            decision = ExposureDecision.BELOW_TARGET
        else:
            target_exposure = current_exposure
            decision = ExposureDecision.HOLD

        logger.debug(
            "exposure_targeted",
            current_leverage=round(current_leverage, 4),
            target_exposure=target_exposure,
            decision=decision.value,
        )

        return ExposureTarget(
            target_exposure=target_exposure,
            current_leverage=current_leverage,
            decision=decision,
        )
