"""
End-to-end rebalance flow.

Tests computing proposals from a DuckDB-backed portfolio, accepting them,
and rejecting proposals computed against stale positions.
"""

import threading
import pytest
from datetime import date, datetime, timedelta, timezone

from rebalancer.config import PortfolioConfiguration
from rebalancer.exceptions import NotFoundError, StaleProposalError
from rebalancer.portfolio.allocator import TradeAction
from rebalancer.portfolio.models import Asset
from rebalancer.rebalance.proposal import RebalanceProposal
from rebalancer.rebalance.service import RebalanceService
from rebalancer.storage.duckdb_store import DuckDBStore

PORTFOLIO_ID = "test-portfolio"


def make_service(store) -> RebalanceService:
    return RebalanceService(store, store, store, store, store, store)


class TestCalculateProposal:
    """Tests for proposal computation."""

    def test_under_levered_portfolio_moves_to_target(self, seeded_store):
        """Test 1.5x leverage is raised to 2.5x with dynamic weights."""
        proposal = make_service(seeded_store).calculate_proposal(PORTFOLIO_ID)

        assert proposal.current_equity == 10000.0
        assert proposal.current_exposure == pytest.approx(15000.0)
        assert proposal.current_leverage == pytest.approx(1.5)
        assert proposal.target_exposure == pytest.approx(25000.0)
        assert proposal.target_leverage == pytest.approx(2.5)
        assert proposal.summary.borrow_increase == pytest.approx(10000.0)
        assert proposal.summary.equity_used == 0.0

        assert proposal.dynamic_weights_computed
        assert sum(proposal.weights_used.values()) == pytest.approx(1.0)
        assert sum(p.target_value for p in proposal.positions) == pytest.approx(25000.0)
        assert proposal.positions_version == 3

    def test_flat_equity_triggers_volatility_signal(self, seeded_store):
        """Test flat equity history is reported as low volatility."""
        proposal = make_service(seeded_store).calculate_proposal(PORTFOLIO_ID)

        assert proposal.realized_volatility == 0.0
        assert proposal.signals.volatility_triggered
        assert not proposal.signals.drawdown_triggered
        assert proposal.deploy_fraction == 0.5

    def test_drawdown_detected(self, seeded_store):
        """Test a fall from peak is reported."""
        seeded_store.record_snapshot(PORTFOLIO_ID, date(2024, 6, 29), 8500.0, peak_equity=10000.0)

        proposal = make_service(seeded_store).calculate_proposal(PORTFOLIO_ID)

        assert proposal.current_equity == 8500.0
        assert proposal.drawdown == pytest.approx(-0.15)
        assert proposal.signals.drawdown_triggered

    def test_calculation_does_not_mutate(self, seeded_store):
        """Test computing proposals leaves state alone and is repeatable."""
        service = make_service(seeded_store)

        first = service.calculate_proposal(PORTFOLIO_ID)
        second = service.calculate_proposal(PORTFOLIO_ID)

        assert first == second
        assert seeded_store.positions_version(PORTFOLIO_ID) == 3

    def test_static_weights_when_dynamic_disabled(self, seeded_store, default_config):
        """Test the configured weights are used when the optimizer is off."""
        config = PortfolioConfiguration.from_dict(
            dict(default_config.to_dict(), use_dynamic_sharpe_rebalance=False)
        )
        seeded_store.save_configuration(PORTFOLIO_ID, config)

        proposal = make_service(seeded_store).calculate_proposal(PORTFOLIO_ID)

        assert not proposal.dynamic_weights_computed
        assert proposal.weights_used == default_config.target_weights
        spy = next(p for p in proposal.positions if p.asset_symbol == "SPY")
        assert spy.target_value == pytest.approx(25000.0 * 0.5)

    def test_missing_portfolio(self, seeded_store):
        """Test unknown portfolio raises NotFoundError."""
        with pytest.raises(NotFoundError):
            make_service(seeded_store).calculate_proposal("missing")


class TestShortHistory:
    """Tests for portfolios without enough price history."""

    def test_falls_back_to_static_weights(self, default_config):
        """Test fewer than 20 returns per asset uses the configured weights."""
        store = DuckDBStore(DuckDBStore.MEMORY)
        try:
            store.create_portfolio(PORTFOLIO_ID, "Short history", default_config)
            start = date(2024, 1, 1)
            for i, symbol in enumerate(default_config.target_weights):
                asset = Asset(asset_id=symbol.lower(), symbol=symbol)
                store.upsert_asset(asset)
                store.insert_prices(
                    asset.asset_id,
                    [(start + timedelta(days=d), 100.0 + i + d) for d in range(10)],
                )

            proposal = make_service(store).calculate_proposal(PORTFOLIO_ID)

            assert not proposal.dynamic_weights_computed
            assert proposal.weights_used == default_config.target_weights
            # No snapshots: equity comes from initial capital
            assert proposal.current_equity == 10000.0
            assert proposal.target_exposure == pytest.approx(25000.0)
            assert proposal.realized_volatility is None
        finally:
            store.close()


class TestAcceptProposal:
    """Tests for applying proposals."""

    def test_accept_applies_targets(self, seeded_store):
        """Test accepting overwrites positions and journals the rebalance."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        result = service.accept_proposal(PORTFOLIO_ID, proposal)

        assert result.success
        assert result.positions_version == 4
        assert result.rebalance_event_id is not None

        held = {p.symbol: p for p in seeded_store.list_by_portfolio(PORTFOLIO_ID)}
        for position in proposal.positions:
            assert held[position.asset_symbol].quantity == pytest.approx(position.target_quantity)
            assert held[position.asset_symbol].avg_price == pytest.approx(position.current_price)

        events = seeded_store.list_rebalance_events(PORTFOLIO_ID)
        assert len(events) == 1
        assert events[0]["triggered_by"] == "user"
        assert events[0]["target_leverage"] == pytest.approx(2.5)
        assert len(seeded_store.list_rebalance_positions(result.rebalance_event_id)) == len(proposal.positions)

    def test_accept_records_metrics_snapshot(self, seeded_store):
        """Test today's snapshot carries the new exposure and decision metadata."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        result = service.accept_proposal(PORTFOLIO_ID, proposal)

        today = datetime.now(timezone.utc).date()
        latest = seeded_store.recent_equity(PORTFOLIO_ID, 1)[0]
        assert latest.date == today
        assert latest.equity == 10000.0

        metadata = seeded_store.get_snapshot_metadata(PORTFOLIO_ID, today)
        assert metadata["rebalance_event_id"] == result.rebalance_event_id
        assert metadata["dynamic_weights"] is True
        assert metadata["deploy_fraction"] == 0.5
        assert len(metadata["composition"]) == len(proposal.positions)

    def test_rebalanced_portfolio_holds(self, seeded_store):
        """Test recomputing right after accepting proposes no trades."""
        service = make_service(seeded_store)
        service.accept_proposal(PORTFOLIO_ID, service.calculate_proposal(PORTFOLIO_ID))

        proposal = service.calculate_proposal(PORTFOLIO_ID)

        assert proposal.current_leverage == pytest.approx(2.5)
        assert proposal.target_exposure == pytest.approx(25000.0)
        assert all(p.action == TradeAction.HOLD for p in proposal.positions)

    def test_accept_serialized_proposal(self, seeded_store):
        """Test a proposal sent back as JSON-shaped data can be accepted."""
        service = make_service(seeded_store)
        data = service.calculate_proposal(PORTFOLIO_ID).to_dict()

        result = service.accept_proposal(PORTFOLIO_ID, RebalanceProposal.from_dict(data))

        assert result.success

    def test_stale_proposal_rejected(self, seeded_store):
        """Test positions changed after computing reject the proposal."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        seeded_store.upsert_position(PORTFOLIO_ID, "spy", 1.0, 500.0)

        with pytest.raises(StaleProposalError):
            service.accept_proposal(PORTFOLIO_ID, proposal)

        spy = next(p for p in seeded_store.list_by_portfolio(PORTFOLIO_ID) if p.symbol == "SPY")
        assert spy.quantity == 1.0
        assert seeded_store.list_rebalance_events(PORTFOLIO_ID) == []

    def test_same_proposal_accepted_once(self, seeded_store):
        """Test a second accept of the same proposal is stale."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        service.accept_proposal(PORTFOLIO_ID, proposal)

        with pytest.raises(StaleProposalError):
            service.accept_proposal(PORTFOLIO_ID, proposal)

    def test_concurrent_accepts(self, seeded_store):
        """Test concurrent accepts of one proposal: exactly one wins."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        outcomes = []

        def accept():
            try:
                outcomes.append(service.accept_proposal(PORTFOLIO_ID, proposal).success)
            except StaleProposalError:
                outcomes.append(False)

        threads = [threading.Thread(target=accept) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == [False, False, False, True]
        assert seeded_store.positions_version(PORTFOLIO_ID) == 4
        assert len(seeded_store.list_rebalance_events(PORTFOLIO_ID)) == 1

    def test_proposal_for_other_portfolio_rejected(self, seeded_store):
        """Test a proposal cannot be applied to a different portfolio."""
        service = make_service(seeded_store)
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        with pytest.raises(ValueError):
            service.accept_proposal("other", proposal)


class FailingJournal:
    """Journal whose writes always fail."""

    def record_rebalance(self, portfolio_id, proposal, triggered_by="user"):
        raise RuntimeError("journal unavailable")


class TestJournalFailure:
    """Tests for accepts whose history entry cannot be written."""

    def test_positions_committed_without_event(self, seeded_store):
        """Test a journal error still reports the committed positions update."""
        service = RebalanceService(
            seeded_store, seeded_store, seeded_store, seeded_store, seeded_store,
            journal=FailingJournal(),
        )
        proposal = service.calculate_proposal(PORTFOLIO_ID)

        result = service.accept_proposal(PORTFOLIO_ID, proposal)

        assert result.success
        assert result.rebalance_event_id is None
        assert result.positions_version == 4
        assert "not recorded" in result.message

        held = {p.symbol: p for p in seeded_store.list_by_portfolio(PORTFOLIO_ID)}
        for position in proposal.positions:
            assert held[position.asset_symbol].quantity == pytest.approx(position.target_quantity)
        assert seeded_store.list_rebalance_events(PORTFOLIO_ID) == []

    def test_retry_after_journal_failure_is_stale(self, seeded_store):
        """Test the same proposal cannot be applied twice after a journal error."""
        service = RebalanceService(
            seeded_store, seeded_store, seeded_store, seeded_store, seeded_store,
            journal=FailingJournal(),
        )
        proposal = service.calculate_proposal(PORTFOLIO_ID)
        service.accept_proposal(PORTFOLIO_ID, proposal)

        with pytest.raises(StaleProposalError):
            service.accept_proposal(PORTFOLIO_ID, proposal)
