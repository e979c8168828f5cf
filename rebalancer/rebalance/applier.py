"""
Writes accepted proposals back as positions.

Each accept runs under the lock its portfolio hashes to and is checked
against the positions version the proposal was computed from, so two
concurrent accepts cannot both overwrite the same state.
"""

import threading
from dataclasses import dataclass
from typing import Optional
import structlog

from rebalancer.exceptions import StaleProposalError
from rebalancer.portfolio.models import TargetPosition
from rebalancer.rebalance.proposal import RebalanceProposal
from rebalancer.storage.protocols import PositionRepository, RebalanceJournal

logger = structlog.get_logger(__name__)

LOCK_STRIPES = 64


@dataclass(frozen=True)
class AcceptResult:
    """Outcome of accepting a proposal."""
    success: bool
    message: str
    rebalance_event_id: Optional[str]
    positions_version: int


class ProposalApplier:
    """
    Overwrites persisted positions with a proposal's targets.

    Quantity, average price and exposure are set to the target values
    (quantity = target quantity, avg price = current price,
    exposure = target value). Positions with zero weight are not in the
    proposal and are left untouched.
    """

    def __init__(
        self,
        positions: PositionRepository,
        journal: Optional[RebalanceJournal] = None,
        lock_stripes: int = LOCK_STRIPES,
    ):
        self.positions = positions
        self.journal = journal

        # Portfolios hash onto a fixed set of locks
        self._locks = [threading.Lock() for _ in range(lock_stripes)]

    def _lock_for(self, portfolio_id: str) -> threading.Lock:
        return self._locks[hash(portfolio_id) % len(self._locks)]

    def apply(
        self,
        portfolio_id: str,
        proposal: RebalanceProposal,
        triggered_by: str = "user",
    ) -> AcceptResult:
        """
        Apply an accepted proposal.

        Args:
            portfolio_id: Portfolio to update
            proposal: Proposal previously returned for this portfolio
            triggered_by: Recorded on the rebalance event

        Returns:
            AcceptResult. rebalance_event_id is None when the history entry
            could not be recorded; the positions update still stands.

        Raises:
            ValueError: if the proposal belongs to another portfolio
            StaleProposalError: if positions changed since the proposal was computed
        """
        if proposal.portfolio_id != portfolio_id:
            raise ValueError(
                f"Proposal for portfolio {proposal.portfolio_id} "
                f"cannot be applied to {portfolio_id}"
            )

        targets = [
            TargetPosition(
                asset_id=position.asset_id,
                quantity=position.target_quantity,
                avg_price=position.current_price,
                exposure=position.target_value,
            )
            for position in proposal.positions
        ]

        with self._lock_for(portfolio_id):
            try:
                new_version = self.positions.apply(
                    portfolio_id, targets, proposal.positions_version
                )
            except StaleProposalError as e:
                logger.warning(
                    "stale_proposal_rejected",
                    portfolio_id=portfolio_id,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version,
                )
                raise

            event_id = None
            message = "Rebalance accepted and portfolio updated"
            if self.journal is not None:
                try:
                    event_id = self.journal.record_rebalance(portfolio_id, proposal, triggered_by)
                except Exception as e:
                    # Positions are already committed at new_version
                    logger.error(
                        "rebalance_journal_failed",
                        portfolio_id=portfolio_id,
                        positions_version=new_version,
                        error=str(e),
                    )
                    message = "Rebalance accepted and portfolio updated; history entry not recorded"

        logger.info(
            "proposal_applied",
            portfolio_id=portfolio_id,
            positions=len(targets),
            positions_version=new_version,
            rebalance_event_id=event_id,
        )

        return AcceptResult(
            success=True,
            message=message,
            rebalance_event_id=event_id,
            positions_version=new_version,
        )
