"""Collaborator protocols consumed by the rebalance service."""

from typing import TYPE_CHECKING, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from rebalancer.config import PortfolioConfiguration
    from rebalancer.portfolio.models import Asset, EquitySnapshot, Position, TargetPosition
    from rebalancer.rebalance.proposal import RebalanceProposal


class ConfigurationProvider(Protocol):
    """Protocol for reading portfolio configuration."""

    def get(self, portfolio_id: str) -> "PortfolioConfiguration":
        """Configuration for a portfolio. Raises NotFoundError if absent."""
        ...


class AssetRepository(Protocol):
    """Protocol for the asset catalog."""

    def list_assets(self) -> list["Asset"]:
        """All known assets."""
        ...


class PriceRepository(Protocol):
    """Protocol for close-price lookups."""

    def latest(self, asset_id: str) -> Optional[float]:
        """Most recent close, or None."""
        ...

    def history(self, asset_id: str) -> list[float]:
        """All closes, oldest first."""
        ...


class PositionRepository(Protocol):
    """Protocol for portfolio positions."""

    def list_by_portfolio(self, portfolio_id: str) -> list["Position"]:
        """Current positions of a portfolio."""
        ...

    def positions_version(self, portfolio_id: str) -> int:
        """Version counter bumped on every positions write."""
        ...

    def apply(
        self,
        portfolio_id: str,
        targets: Sequence["TargetPosition"],
        expected_version: int,
    ) -> int:
        """
        Overwrite positions with targets if the version still matches.

        Returns the new version. Raises StaleProposalError otherwise.
        """
        ...


class MetricsHistoryProvider(Protocol):
    """Protocol for stored equity snapshots."""

    def recent_equity(self, portfolio_id: str, n: int) -> list["EquitySnapshot"]:
        """The n most recent snapshots, newest first."""
        ...


class RebalanceJournal(Protocol):
    """Protocol for recording accepted rebalances."""

    def record_rebalance(
        self,
        portfolio_id: str,
        proposal: "RebalanceProposal",
        triggered_by: str = "user",
    ) -> str:
        """Record an accepted proposal. Returns the rebalance event id."""
        ...
