"""
Rebalance proposals.

Compute a proposal from persisted state, then apply it only when accepted.
"""

from rebalancer.rebalance.applier import AcceptResult, ProposalApplier
from rebalancer.rebalance.assembler import ProposalAssembler, RebalanceInputs
from rebalancer.rebalance.proposal import ProposalSummary, RebalanceProposal
from rebalancer.rebalance.service import RebalanceService

__all__ = [
    "AcceptResult",
    "ProposalApplier",
    "ProposalAssembler",
    "ProposalSummary",
    "RebalanceInputs",
    "RebalanceProposal",
    "RebalanceService",
]
