"""
Rebalance engine errors.

Only NotFoundError, ConfigurationError and StaleProposalError ever reach a caller.
InsufficientDataError is recovered inside the proposal service by falling back
to the configured static weights.
"""


class RebalanceError(Exception):
    """Base class for rebalance engine errors."""


class InsufficientDataError(RebalanceError):
    """Fewer than two assets have enough return history to optimize."""

    def __init__(self, qualifying_symbols: list[str], required_assets: int = 2):
        self.qualifying_symbols = list(qualifying_symbols)
        self.required_assets = required_assets
        super().__init__(
            f"Insufficient assets with price history: "
            f"{len(self.qualifying_symbols)} < {required_assets}. "
            f"Assets with data: {', '.join(self.qualifying_symbols) or 'none'}"
        )


class NotFoundError(RebalanceError):
    """A portfolio or asset does not exist."""


class ConfigurationError(RebalanceError):
    """Portfolio configuration violates its invariants."""


class StaleProposalError(RebalanceError):
    """
    Positions changed between computing a proposal and accepting it.

    Raised instead of overwriting state that the proposal never saw.
    """

    def __init__(self, portfolio_id: str, expected_version: int, actual_version: int):
        self.portfolio_id = portfolio_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Proposal for portfolio {portfolio_id} was computed against positions "
            f"version {expected_version}, current version is {actual_version}"
        )
