"""
Rebalance proposal value types.

A proposal is recomputed from persisted state on every request and never
mutated. to_dict()/from_dict() give the JSON shape returned to callers,
which is also what they submit back when accepting.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from rebalancer.portfolio.allocator import ProposalPosition, TradeAction
from rebalancer.risk.deploy_signals import DeploySignals


@dataclass(frozen=True)
class ProposalSummary:
    """Portfolio figures after the rebalance."""
    new_equity: float
    new_exposure: float
    new_leverage: float
    equity_used: float
    borrow_increase: float


@dataclass(frozen=True)
class RebalanceProposal:
    """Immutable rebalance proposal."""
    portfolio_id: str
    positions_version: int

    # Current state
    current_equity: float
    current_exposure: float
    current_leverage: float
    current_margin_ratio: float
    peak_equity: float

    # Target state
    target_leverage: float
    target_exposure: float

    signals: DeploySignals
    positions: tuple[ProposalPosition, ...]
    summary: ProposalSummary

    weights_used: dict[str, float] = field(default_factory=dict)
    dynamic_weights_computed: bool = False

    @property
    def deploy_fraction(self) -> float:
        return self.signals.deploy_fraction

    @property
    def drawdown(self) -> float:
        return self.signals.drawdown

    @property
    def weight_deviation(self) -> float:
        return self.signals.weight_deviation

    @property
    def realized_volatility(self) -> Optional[float]:
        return self.signals.realized_volatility

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe mapping."""
        return {
            "portfolio_id": self.portfolio_id,
            "positions_version": self.positions_version,
            "current_equity": self.current_equity,
            "current_exposure": self.current_exposure,
            "current_leverage": self.current_leverage,
            "current_margin_ratio": self.current_margin_ratio,
            "peak_equity": self.peak_equity,
            "target_leverage": self.target_leverage,
            "target_exposure": self.target_exposure,
            "deploy_fraction": self.signals.deploy_fraction,
            "deploy_signals": {
                "drawdown_triggered": self.signals.drawdown_triggered,
                "weight_deviation_triggered": self.signals.weight_deviation_triggered,
                "volatility_triggered": self.signals.volatility_triggered,
            },
            "drawdown": self.signals.drawdown,
            "weight_deviation": self.signals.weight_deviation,
            "realized_volatility": self.signals.realized_volatility,
            "positions": [
                {**asdict(position), "action": position.action.value}
                for position in self.positions
            ],
            "summary": asdict(self.summary),
            "weights_used": dict(self.weights_used),
            "dynamic_weights_computed": self.dynamic_weights_computed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RebalanceProposal":
        """Rebuild a proposal from its to_dict() mapping."""
        triggers = data.get("deploy_signals", {})

        signals = DeploySignals(
            drawdown=float(data["drawdown"]),
            weight_deviation=float(data["weight_deviation"]),
            realized_volatility=data.get("realized_volatility"),
            drawdown_triggered=bool(triggers.get("drawdown_triggered", False)),
            weight_deviation_triggered=bool(triggers.get("weight_deviation_triggered", False)),
            volatility_triggered=bool(triggers.get("volatility_triggered", False)),
            deploy_fraction=float(data["deploy_fraction"]),
        )

        positions = tuple(
            ProposalPosition(**{**position, "action": TradeAction(position["action"])})
            for position in data.get("positions", [])
        )

        return cls(
            portfolio_id=data["portfolio_id"],
            positions_version=int(data["positions_version"]),
            current_equity=float(data["current_equity"]),
            current_exposure=float(data["current_exposure"]),
            current_leverage=float(data["current_leverage"]),
            current_margin_ratio=float(data["current_margin_ratio"]),
            peak_equity=float(data["peak_equity"]),
            target_leverage=float(data["target_leverage"]),
            target_exposure=float(data["target_exposure"]),
            signals=signals,
            positions=positions,
            summary=ProposalSummary(**data["summary"]),
            weights_used={k: float(v) for k, v in data.get("weights_used", {}).items()},
            dynamic_weights_computed=bool(data.get("dynamic_weights_computed", False)),
        )
