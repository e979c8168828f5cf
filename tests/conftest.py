"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import pytest
import os
from datetime import date, timedelta
from pathlib import Path
import tempfile
import shutil

import numpy as np

from rebalancer.config import PortfolioConfiguration
from rebalancer.portfolio.models import Asset
from rebalancer.storage.duckdb_store import DuckDBStore
from rebalancer.storage.retry import RetryPolicy

# Set test environment
os.environ["ENVIRONMENT"] = "test"

PORTFOLIO_ID = "test-portfolio"

TEST_WEIGHTS = {"SPY": 0.5, "GLD": 0.3, "BTC-USD": 0.2}


def random_walk_closes(start: float, days: int, drift: float = 0.0005, vol: float = 0.01) -> list[float]:
    """Chronological closes from a seeded geometric random walk."""
    returns = np.random.normal(drift, vol, days - 1)
    return [float(p) for p in start * np.exp(np.concatenate([[0.0], np.cumsum(returns)]))]


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def default_config():
    """Configuration with test weights and 10k of initial capital."""
    return PortfolioConfiguration(
        target_weights=dict(TEST_WEIGHTS),
        initial_capital=10000.0,
    )


@pytest.fixture
def synthetic_closes():
    """120 days of closes for three assets."""
    np.random.seed(42)
    return {
        "SPY": random_walk_closes(450.0, 120, drift=0.0004, vol=0.01),
        "GLD": random_walk_closes(180.0, 120, drift=0.0002, vol=0.008),
        "BTC-USD": random_walk_closes(40000.0, 120, drift=0.001, vol=0.035),
    }


@pytest.fixture
def memory_store():
    """Empty in-memory DuckDB store."""
    store = DuckDBStore(DuckDBStore.MEMORY, retry_policy=RetryPolicy(max_attempts=1))
    yield store
    store.close()


@pytest.fixture
def seeded_store(memory_store, default_config, synthetic_closes):
    """
    Store with one portfolio at 1.5x leverage.

    Equity 10k (30 daily snapshots, flat at 10k), exposure 15k split by the
    target weights at the latest closes.
    """
    store = memory_store
    end = date(2024, 6, 28)
    price_dates = [end - timedelta(days=119 - i) for i in range(120)]

    store.create_portfolio(PORTFOLIO_ID, "Test portfolio", default_config)

    for symbol, closes in synthetic_closes.items():
        asset = Asset(asset_id=symbol.lower(), symbol=symbol, name=f"{symbol} asset")
        store.upsert_asset(asset)
        store.insert_prices(asset.asset_id, list(zip(price_dates, closes)))

        value = 15000.0 * TEST_WEIGHTS[symbol]
        store.upsert_position(PORTFOLIO_ID, asset.asset_id, value / closes[-1], closes[-1])

    for i in range(30):
        store.record_snapshot(PORTFOLIO_ID, end - timedelta(days=29 - i), 10000.0, peak_equity=10000.0)

    return store
