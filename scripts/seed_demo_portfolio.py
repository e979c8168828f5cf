#!/usr/bin/env python3
"""
Seed a demo portfolio with synthetic prices, positions and equity history.

Usage:
    python scripts/seed_demo_portfolio.py
    python scripts/seed_demo_portfolio.py --portfolio demo --days 250 --equity 20000
"""

import argparse
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import numpy as np
import structlog
from dotenv import load_dotenv

from rebalancer.config import PortfolioConfiguration, load_settings
from rebalancer.portfolio.models import Asset
from rebalancer.storage.duckdb_store import DuckDBStore
from rebalancer.storage.retry import RetryPolicy
from rebalancer.utils.logging import setup_logging

logger = structlog.get_logger(__name__)

# symbol -> (name, start price, annual drift, annual volatility)
DEMO_ASSETS = {
    "SPY": ("SPDR S&P 500 ETF", 450.0, 0.08, 0.16),
    "GLD": ("SPDR Gold Shares", 180.0, 0.04, 0.14),
    "BTC-USD": ("Bitcoin", 40000.0, 0.30, 0.65),
}


def simulate_closes(start: float, drift: float, vol: float, days: int, rng) -> list[float]:
    """Geometric Brownian motion closes."""
    dt = 1 / 252
    shocks = rng.normal((drift - 0.5 * vol ** 2) * dt, vol * np.sqrt(dt), days - 1)
    path = start * np.exp(np.concatenate([[0.0], np.cumsum(shocks)]))
    return [float(p) for p in path]


def seed(store: DuckDBStore, portfolio_id: str, config: PortfolioConfiguration,
         days: int, equity: float, seed_value: int) -> None:
    rng = np.random.default_rng(seed_value)
    end = date.today()
    dates = [end - timedelta(days=days - 1 - i) for i in range(days)]

    store.create_portfolio(portfolio_id, f"Demo portfolio {portfolio_id}", config)

    latest = {}
    for symbol, (name, start, drift, vol) in DEMO_ASSETS.items():
        asset = Asset(asset_id=symbol.lower(), symbol=symbol, name=name)
        store.upsert_asset(asset)

        closes = simulate_closes(start, drift, vol, days, rng)
        store.insert_prices(asset.asset_id, list(zip(dates, closes)))
        latest[symbol] = (asset, closes[-1])

    # Under-levered start so the first proposal has something to do
    exposure = equity * 1.5
    for symbol, weight in config.target_weights.items():
        asset, price = latest[symbol]
        store.upsert_position(portfolio_id, asset.asset_id, exposure * weight / price, price)

    equity_path = simulate_closes(equity * 0.95, 0.10, 0.12, min(days, 90), rng)
    equity_path[-1] = equity
    peak = 0.0
    for day, value in zip(dates[-len(equity_path):], equity_path):
        peak = max(peak, value)
        store.record_snapshot(portfolio_id, day, value, peak_equity=peak)

    logger.info(
        "demo_portfolio_seeded",
        portfolio_id=portfolio_id,
        days=days,
        equity=equity,
        assets=list(DEMO_ASSETS),
    )


def main():
    parser = argparse.ArgumentParser(description="Seed a demo rebalancer portfolio")
    parser.add_argument("--config", default="config/settings.yaml", help="Path to configuration file")
    parser.add_argument("--db", help="DuckDB path (overrides config)")
    parser.add_argument("--portfolio", default="demo", help="Portfolio ID")
    parser.add_argument("--days", type=int, default=250, help="Days of price history")
    parser.add_argument("--equity", type=float, default=20000.0, help="Current equity")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")

    args = parser.parse_args()

    load_dotenv()
    settings = load_settings(args.config)
    setup_logging(settings["log_level"], settings["json_logs"])

    defaults = dict(settings["portfolio_defaults"])
    defaults["initial_capital"] = args.equity
    config = PortfolioConfiguration.from_dict(defaults)

    unknown = set(config.target_weights) - set(DEMO_ASSETS)
    if unknown:
        parser.error(f"Demo prices are only generated for {sorted(DEMO_ASSETS)}, got {sorted(unknown)}")

    store = DuckDBStore(
        args.db or settings["storage"]["duckdb"]["path"],
        retry_policy=RetryPolicy.from_dict(settings["storage"]["retry"]),
    )
    try:
        seed(store, args.portfolio, config, args.days, args.equity, args.seed)
    finally:
        store.close()

    print(f"Seeded portfolio '{args.portfolio}' into {store.db_path}")


if __name__ == "__main__":
    main()
