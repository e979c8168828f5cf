#!/usr/bin/env python3
"""
Compute (and optionally accept) a rebalance proposal.

Usage:
    python scripts/run_rebalance.py --portfolio demo
    python scripts/run_rebalance.py --portfolio demo --accept
    python scripts/run_rebalance.py --portfolio demo --db data/other.duckdb --summary
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from rebalancer.config import load_settings
from rebalancer.exceptions import NotFoundError, StaleProposalError
from rebalancer.rebalance.proposal import RebalanceProposal
from rebalancer.rebalance.service import RebalanceService
from rebalancer.storage.duckdb_store import DuckDBStore
from rebalancer.storage.retry import RetryPolicy
from rebalancer.utils.logging import setup_logging

logger = structlog.get_logger(__name__)


def print_proposal(proposal: RebalanceProposal) -> None:
    """Human-readable proposal summary."""
    print(f"\nPortfolio {proposal.portfolio_id} (positions version {proposal.positions_version})")
    print(f"  Equity:   ${proposal.current_equity:,.2f}  (peak ${proposal.peak_equity:,.2f})")
    print(f"  Exposure: ${proposal.current_exposure:,.2f} -> ${proposal.target_exposure:,.2f}")
    print(f"  Leverage: {proposal.current_leverage:.2f}x -> {proposal.summary.new_leverage:.2f}x "
          f"(target {proposal.target_leverage:.2f}x)")
    print(f"  Borrow change: ${proposal.summary.borrow_increase:,.2f}")

    signals = proposal.signals
    volatility = (
        f"{signals.realized_volatility:.2%}" if signals.realized_volatility is not None else "n/a"
    )
    print(f"\n  Drawdown {signals.drawdown:.2%} (triggered={signals.drawdown_triggered})")
    print(f"  Weight deviation {signals.weight_deviation:.2%} "
          f"(triggered={signals.weight_deviation_triggered})")
    print(f"  Realized volatility {volatility} (triggered={signals.volatility_triggered})")
    print(f"  Deploy fraction {proposal.deploy_fraction:.2f}")

    kind = "dynamic" if proposal.dynamic_weights_computed else "static"
    print(f"\n  Weights ({kind}):")
    for symbol, weight in sorted(proposal.weights_used.items()):
        print(f"    {symbol:<10} {weight:.2%}")

    print("\n  Trades:")
    for p in proposal.positions:
        print(
            f"    {p.action.value.upper():<5} {p.asset_symbol:<10} "
            f"{p.delta_quantity:+.6f} @ ${p.current_price:,.2f} "
            f"(${p.current_value:,.2f} -> ${p.target_value:,.2f})"
        )


def main():
    parser = argparse.ArgumentParser(description="Leveraged portfolio rebalance")
    parser.add_argument("--portfolio", required=True, help="Portfolio ID")
    parser.add_argument("--accept", action="store_true", help="Apply the proposal")
    parser.add_argument("--config", default="config/settings.yaml", help="Path to configuration file")
    parser.add_argument("--db", help="DuckDB path (overrides config)")
    parser.add_argument("--summary", action="store_true", help="Print a readable summary instead of JSON")

    args = parser.parse_args()

    load_dotenv()
    settings = load_settings(args.config)
    setup_logging(settings["log_level"], settings["json_logs"])

    store = DuckDBStore(
        args.db or settings["storage"]["duckdb"]["path"],
        retry_policy=RetryPolicy.from_dict(settings["storage"]["retry"]),
    )
    service = RebalanceService(store, store, store, store, store, store)

    try:
        proposal = service.calculate_proposal(args.portfolio)

        if args.summary:
            print_proposal(proposal)
        else:
            print(json.dumps(proposal.to_dict(), indent=2))

        if args.accept:
            result = service.accept_proposal(args.portfolio, proposal, triggered_by="cli")
            print(f"\n{result.message} (event {result.rebalance_event_id}, "
                  f"version {result.positions_version})")

    except NotFoundError as e:
        logger.error("portfolio_not_found", portfolio_id=args.portfolio, error=str(e))
        sys.exit(1)
    except StaleProposalError as e:
        logger.error("proposal_stale", portfolio_id=args.portfolio, error=str(e))
        sys.exit(2)
    finally:
        store.close()


if __name__ == "__main__":
    main()
