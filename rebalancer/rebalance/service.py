"""
Rebalance service.

Gathers positions, prices, configuration and equity history from the
storage collaborators, hands them to the ProposalAssembler, and applies
accepted proposals through the ProposalApplier.
"""

from typing import Optional
import structlog

from rebalancer.rebalance.applier import AcceptResult, ProposalApplier
from rebalancer.rebalance.assembler import ProposalAssembler, RebalanceInputs
from rebalancer.rebalance.proposal import RebalanceProposal
from rebalancer.storage.protocols import (
    AssetRepository,
    ConfigurationProvider,
    MetricsHistoryProvider,
    PositionRepository,
    PriceRepository,
    RebalanceJournal,
)

logger = structlog.get_logger(__name__)

# Extra snapshots fetched beyond the volatility lookback
HISTORY_PADDING = 10


class RebalanceService:
    """
    Computes and accepts rebalance proposals for a portfolio.

    Usage:
        service = RebalanceService(store, store, store, store, store, store)
        proposal = service.calculate_proposal("demo")
        result = service.accept_proposal("demo", proposal)
    """

    def __init__(
        self,
        configuration: ConfigurationProvider,
        assets: AssetRepository,
        prices: PriceRepository,
        positions: PositionRepository,
        metrics: MetricsHistoryProvider,
        journal: Optional[RebalanceJournal] = None,
        assembler: Optional[ProposalAssembler] = None,
        applier: Optional[ProposalApplier] = None,
    ):
        self.configuration = configuration
        self.assets = assets
        self.prices = prices
        self.positions = positions
        self.metrics = metrics
        self.assembler = assembler or ProposalAssembler()
        self.applier = applier or ProposalApplier(positions, journal)

    def gather_inputs(self, portfolio_id: str) -> RebalanceInputs:
        """
        Load everything a proposal needs.

        Raises:
            NotFoundError: if the portfolio does not exist
        """
        config = self.configuration.get(portfolio_id)
        positions = self.positions.list_by_portfolio(portfolio_id)
        positions_version = self.positions.positions_version(portfolio_id)

        held_symbols = [p.symbol for p in positions]
        config = config.with_held_assets(held_symbols)

        relevant = [
            asset for asset in self.assets.list_assets()
            if asset.symbol in config.target_weights
        ]

        latest_prices: dict[str, float] = {}
        asset_ids = {a.asset_id for a in relevant} | {p.asset_id for p in positions}
        for asset_id in sorted(asset_ids):
            price = self.prices.latest(asset_id)
            if price is not None:
                latest_prices[asset_id] = price

        price_history: dict[str, list[float]] = {}
        if config.use_dynamic_sharpe_rebalance:
            for asset in relevant:
                closes = self.prices.history(asset.asset_id)
                if closes:
                    price_history[asset.symbol] = closes

        equity_history = self.metrics.recent_equity(
            portfolio_id, config.volatility_lookback_days + HISTORY_PADDING
        )

        logger.debug(
            "rebalance_inputs_gathered",
            portfolio_id=portfolio_id,
            positions=len(positions),
            relevant_assets=[a.symbol for a in relevant],
            priced_assets=len(latest_prices),
            equity_snapshots=len(equity_history),
        )

        return RebalanceInputs(
            portfolio_id=portfolio_id,
            positions_version=positions_version,
            config=config,
            positions=positions,
            assets=relevant,
            latest_prices=latest_prices,
            price_history=price_history,
            equity_history=equity_history,
        )

    def calculate_proposal(self, portfolio_id: str) -> RebalanceProposal:
        """
        Compute a fresh rebalance proposal.

        Raises:
            NotFoundError: if the portfolio does not exist
        """
        return self.assembler.assemble(self.gather_inputs(portfolio_id))

    def accept_proposal(
        self,
        portfolio_id: str,
        proposal: RebalanceProposal,
        triggered_by: str = "user",
    ) -> AcceptResult:
        """
        Apply a proposal previously returned by calculate_proposal.

        Raises:
            StaleProposalError: if positions changed since the proposal was computed
        """
        return self.applier.apply(portfolio_id, proposal, triggered_by)
