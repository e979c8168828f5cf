"""
Portfolio configuration and process settings.

PortfolioConfiguration holds everything the rebalance engine needs to know
about one portfolio: leverage bounds, weight bounds, deploy thresholds,
optimizer parameters and the target-weight mapping.

Target weights are stored as JSON and only decoded/encoded at the storage
boundary; the engine always works on the decoded mapping.
"""

import json
import os
import re
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Optional
import structlog
import yaml

from rebalancer.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# Fallback when a portfolio has no weights configured and holds nothing
DEFAULT_TARGET_WEIGHTS: dict[str, float] = {
    "SPY": 0.6,
    "GLD": 0.25,
    "BTC-USD": 0.15,
}

WEIGHT_SUM_TOLERANCE = 0.001


@dataclass(frozen=True)
class PortfolioConfiguration:
    """Rebalance parameters for a single portfolio."""
    # Leverage settings
    leverage_min: float = 2.5
    leverage_target: float = 2.5
    leverage_max: float = 3.0

    # Weight constraints
    min_weight: float = 0.05
    max_weight: float = 0.4

    # Deploy signal thresholds
    drawdown_redeploy_threshold: float = 0.12
    weight_deviation_threshold: float = 0.05
    volatility_lookback_days: int = 63
    volatility_redeploy_threshold: float = 0.18  # Annualized
    gradual_deploy_factor: float = 0.5

    # Optimization parameters
    use_dynamic_sharpe_rebalance: bool = True
    mean_return_shrinkage: float = 0.6
    risk_free_rate: float = 0.02
    yearly_trading_days: int = 252

    initial_capital: float = 0.0
    target_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_TARGET_WEIGHTS)
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PortfolioConfiguration":
        """Build from a plain mapping, ignoring unknown keys."""
        known = {name for name in cls.__dataclass_fields__}
        values = {k: v for k, v in data.items() if k in known}

        if "target_weights" in values:
            weights = values["target_weights"]
            if isinstance(weights, str):
                weights = decode_target_weights(weights)
            values["target_weights"] = {str(k): float(v) for k, v in weights.items()}

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe mapping."""
        return asdict(self)

    def with_held_assets(self, symbols: list[str]) -> "PortfolioConfiguration":
        """
        Return a copy whose target weights include every held asset.

        Held assets missing from the mapping are added with weight 0. If nothing
        is configured and nothing is held, the default weights apply.
        """
        weights = dict(self.target_weights)
        for symbol in symbols:
            weights.setdefault(symbol, 0.0)

        if not symbols and not any(w > 0 for w in weights.values()):
            weights = dict(DEFAULT_TARGET_WEIGHTS)

        return replace(self, target_weights=weights)

    def validate(self) -> None:
        """
        Check configuration invariants.

        Raises:
            ConfigurationError: on the first violated rule
        """
        for name in ("leverage_min", "leverage_target", "leverage_max"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be greater than 0")

        if self.leverage_min > self.leverage_max:
            raise ConfigurationError("leverage_min cannot be greater than leverage_max")

        if not 0 <= self.min_weight <= self.max_weight <= 1:
            raise ConfigurationError(
                f"Weight bounds must satisfy 0 <= min_weight <= max_weight <= 1 "
                f"(got min={self.min_weight}, max={self.max_weight})"
            )

        for name in ("gradual_deploy_factor", "mean_return_shrinkage"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ConfigurationError(f"{name} must be between 0 and 1 (got {value})")

        if self.risk_free_rate < 0:
            raise ConfigurationError("risk_free_rate cannot be negative")

        if self.volatility_lookback_days < 1:
            raise ConfigurationError("volatility_lookback_days must be at least 1")

        validate_target_weights(self.target_weights)


def validate_target_weights(weights: dict[str, float]) -> None:
    """
    Validate a target-weight mapping.

    - At least one asset
    - Every weight is a number in [0, 1]
    - Weights sum to 1 within WEIGHT_SUM_TOLERANCE
    """
    if not isinstance(weights, dict):
        raise ConfigurationError("target_weights must be a mapping")

    if not weights:
        raise ConfigurationError("target_weights must have at least one asset")

    total = 0.0
    for symbol, weight in weights.items():
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight != weight:
            raise ConfigurationError(f"Weight for {symbol} must be a valid number")

        if weight < 0 or weight > 1:
            raise ConfigurationError(f"Weight for {symbol} must be between 0 and 1")

        total += weight

    if abs(total - 1) > WEIGHT_SUM_TOLERANCE:
        raise ConfigurationError(
            f"Target weights must sum to 1.0 (100%). Current sum: {total * 100:.2f}%"
        )


def decode_target_weights(raw: Optional[str]) -> dict[str, float]:
    """Decode stored JSON weights. Unparsable input decodes to an empty mapping."""
    if not raw:
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("target_weights_json_invalid", raw=raw[:100])
        return {}

    if not isinstance(data, dict):
        logger.warning("target_weights_json_not_mapping", kind=type(data).__name__)
        return {}

    return {str(symbol): float(weight) for symbol, weight in data.items()}


def encode_target_weights(weights: dict[str, float]) -> str:
    """Encode weights for storage."""
    return json.dumps(weights, sort_keys=True)


# =========================================================================
# Process settings
# =========================================================================

def default_settings() -> dict:
    """Return default process settings."""
    return {
        "environment": "development",
        "log_level": "INFO",
        "json_logs": True,
        "storage": {
            "duckdb": {"path": "data/rebalancer.duckdb"},
            "retry": {"max_attempts": 5, "delay_seconds": 1.5, "backoff": 1.0},
        },
        "portfolio_defaults": PortfolioConfiguration().to_dict(),
    }


def _expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} references in string config values, recursively."""
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            env_var = match.group(1)
            return os.environ.get(env_var, match.group(0))
        return re.sub(r'\$\{([^}]+)\}', replace_env, value)
    return value


def _merge(base: dict, override: dict) -> dict:
    # Weight maps replace wholesale, a partial merge would break their sum
    merged = dict(base)
    for key, value in override.items():
        if key == "target_weights":
            merged[key] = value
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: str = "config/settings.yaml") -> dict:
    """
    Load process settings from a YAML file.

    Values override the defaults key by key. A missing file falls back to
    the defaults. Portfolio defaults are validated on load.
    """
    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        settings = default_settings()
    else:
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
        settings = _merge(default_settings(), _expand_env_vars(loaded))
        logger.info("config_loaded", path=path)

    PortfolioConfiguration.from_dict(settings["portfolio_defaults"]).validate()
    return settings
