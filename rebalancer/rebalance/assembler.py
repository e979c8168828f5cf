"""
Proposal assembly.

Composes state, deploy signals, weights, exposure target, per-asset deltas
and the equity/borrow split into one RebalanceProposal. Everything here is
computed from the RebalanceInputs value; no I/O happens in this module.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence
import structlog

from rebalancer.accounting.equity_borrow import EquityBorrowAccountant
from rebalancer.config import PortfolioConfiguration
from rebalancer.exceptions import InsufficientDataError
from rebalancer.portfolio.allocator import PositionDeltaCalculator
from rebalancer.portfolio.models import Asset, EquitySnapshot, Position
from rebalancer.portfolio.optimizer import WeightOptimizer
from rebalancer.portfolio.state import StateCalculator
from rebalancer.rebalance.proposal import ProposalSummary, RebalanceProposal
from rebalancer.risk.deploy_signals import DeploySignalEvaluator
from rebalancer.risk.exposure import ExposureTargeter

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RebalanceInputs:
    """Everything a proposal is computed from."""
    portfolio_id: str
    positions_version: int
    config: PortfolioConfiguration
    positions: Sequence[Position]
    assets: Sequence[Asset]                 # Relevant assets, in output order
    latest_prices: dict[str, float]         # asset_id -> latest close
    price_history: dict[str, list[float]] = field(default_factory=dict)  # symbol -> closes
    equity_history: Sequence[EquitySnapshot] = ()  # Newest first


class ProposalAssembler:
    """
    Builds a rebalance proposal.

    StateCalculator -> DeploySignalEvaluator -> WeightOptimizer ->
    ExposureTargeter -> PositionDeltaCalculator -> EquityBorrowAccountant
    """

    def __init__(
        self,
        optimizer: Optional[WeightOptimizer] = None,
        state_calculator: Optional[StateCalculator] = None,
        signal_evaluator: Optional[DeploySignalEvaluator] = None,
        delta_calculator: Optional[PositionDeltaCalculator] = None,
        accountant: Optional[EquityBorrowAccountant] = None,
    ):
        self.optimizer = optimizer or WeightOptimizer()
        self.state_calculator = state_calculator or StateCalculator()
        self.signal_evaluator = signal_evaluator or DeploySignalEvaluator()
        self.delta_calculator = delta_calculator or PositionDeltaCalculator()
        self.accountant = accountant or EquityBorrowAccountant()

    def assemble(self, inputs: RebalanceInputs) -> RebalanceProposal:
        """
        Compute a rebalance proposal.

        Args:
            inputs: Positions, prices, configuration and history

        Returns:
            RebalanceProposal
        """
        config = inputs.config
        latest_snapshot = inputs.equity_history[0] if inputs.equity_history else None

        state = self.state_calculator.calculate(
            inputs.positions,
            inputs.latest_prices,
            latest_snapshot=latest_snapshot,
            history=inputs.equity_history,
            initial_capital=config.initial_capital,
        )

        signals = self.signal_evaluator.evaluate(
            state,
            inputs.equity_history,
            config.target_weights,
            config,
        )

        weights, dynamic = self.determine_weights(inputs)

        exposure_target = ExposureTargeter(
            config.leverage_min,
            config.leverage_target,
            config.leverage_max,
        ).target(state.equity, state.exposure)

        target_exposure = exposure_target.target_exposure

        positions = self.delta_calculator.calculate(
            state,
            target_exposure,
            weights,
            inputs.assets,
            inputs.latest_prices,
        )

        breakdown = self.accountant.breakdown(state.exposure, target_exposure)

        new_leverage = target_exposure / state.equity if state.equity > 0 else 0.0

        proposal = RebalanceProposal(
            portfolio_id=inputs.portfolio_id,
            positions_version=inputs.positions_version,
            current_equity=state.equity,
            current_exposure=state.exposure,
            current_leverage=state.leverage,
            current_margin_ratio=state.margin_ratio,
            peak_equity=state.peak_equity,
            target_leverage=config.leverage_target,
            target_exposure=target_exposure,
            signals=signals,
            positions=tuple(positions),
            summary=ProposalSummary(
                new_equity=state.equity,
                new_exposure=target_exposure,
                new_leverage=new_leverage,
                equity_used=breakdown.equity_used,
                borrow_increase=breakdown.borrow_increase,
            ),
            weights_used=weights,
            dynamic_weights_computed=dynamic,
        )

        logger.info(
            "proposal_assembled",
            portfolio_id=inputs.portfolio_id,
            equity=state.equity,
            current_leverage=round(state.leverage, 4),
            target_leverage=config.leverage_target,
            new_leverage=round(new_leverage, 4),
            decision=exposure_target.decision.value,
            positions=len(positions),
            dynamic_weights=dynamic,
        )

        return proposal

    def determine_weights(self, inputs: RebalanceInputs) -> tuple[dict[str, float], bool]:
        """
        Pick the weights to allocate with.

        Dynamic weights when enabled and computable, otherwise the configured
        target weights.

        Returns:
            (weights, dynamic_weights_computed)
        """
        config = inputs.config
        static_weights = dict(config.target_weights)

        if not config.use_dynamic_sharpe_rebalance:
            return static_weights, False

        closes = {
            asset.symbol: inputs.price_history[asset.symbol]
            for asset in inputs.assets
            if inputs.price_history.get(asset.symbol)
        }

        try:
            result = self.optimizer.optimize(closes, config, config.target_weights)
        except InsufficientDataError as e:
            logger.warning(
                "dynamic_weights_unavailable_using_static",
                portfolio_id=inputs.portfolio_id,
                qualifying_symbols=e.qualifying_symbols,
            )
            return static_weights, False

        if not any(w > 0 for w in result.weights.values()):
            logger.warning(
                "dynamic_weights_all_zero_using_static",
                portfolio_id=inputs.portfolio_id,
            )
            return static_weights, False

        return result.weights, True
