"""
DuckDB storage for portfolios, positions, prices and metrics.

DuckDB backs every collaborator the rebalance service consumes:
- Portfolio configuration (target weights stored as JSON)
- Asset catalog and daily close prices
- Positions, guarded by a per-portfolio version counter
- Daily equity metrics snapshots
- Accepted rebalance events

The rebalance computation itself never touches the database; it only sees
the values these methods return.
"""

import json
import threading
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence
import structlog

import duckdb

from rebalancer.config import (
    PortfolioConfiguration,
    decode_target_weights,
    encode_target_weights,
)
from rebalancer.exceptions import NotFoundError, StaleProposalError
from rebalancer.portfolio.models import Asset, EquitySnapshot, Position, TargetPosition
from rebalancer.storage.retry import RetryPolicy

logger = structlog.get_logger(__name__)

# Portfolio columns that map one-to-one onto PortfolioConfiguration fields
CONFIG_COLUMNS = (
    "leverage_min",
    "leverage_target",
    "leverage_max",
    "min_weight",
    "max_weight",
    "drawdown_redeploy_threshold",
    "weight_deviation_threshold",
    "volatility_lookback_days",
    "volatility_redeploy_threshold",
    "gradual_deploy_factor",
    "use_dynamic_sharpe_rebalance",
    "mean_return_shrinkage",
    "risk_free_rate",
    "yearly_trading_days",
    "initial_capital",
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DuckDBStore:
    """
    DuckDB store implementing the rebalance collaborator protocols.

    Design principles:
    - One connection, serialized by a lock (DuckDB connections are not thread-safe)
    - Positions are only overwritten inside a version-checked transaction
    - Configuration is validated before it is persisted
    """

    MEMORY = ":memory:"

    def __init__(
        self,
        db_path: str = MEMORY,
        read_only: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize DuckDB store.

        Args:
            db_path: Path to DuckDB file, or ":memory:"
            read_only: Open in read-only mode
            retry_policy: Retry policy for opening the connection
        """
        self.db_path = db_path
        self.read_only = read_only
        self.retry_policy = retry_policy or RetryPolicy()
        self._lock = threading.RLock()

        if db_path != self.MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = self.retry_policy.call(
            duckdb.connect,
            db_path,
            read_only=read_only,
            operation="duckdb_connect",
        )

        if not read_only:
            self._init_schema()

        logger.info(
            "duckdb_store_initialized",
            path=db_path,
            read_only=read_only,
        )

    def _init_schema(self) -> None:
        """Initialize database schema."""

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS assets (
                id VARCHAR PRIMARY KEY,
                symbol VARCHAR NOT NULL UNIQUE,
                name VARCHAR
            )
        """)

        # Daily closes
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS asset_prices (
                asset_id VARCHAR NOT NULL,
                date DATE NOT NULL,
                close DOUBLE NOT NULL,

                PRIMARY KEY (asset_id, date)
            )
        """)

        # Portfolio settings; target weights live in target_weights_json
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS portfolios (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                base_currency VARCHAR DEFAULT 'USD',
                initial_capital DOUBLE NOT NULL,

                leverage_min DOUBLE NOT NULL,
                leverage_target DOUBLE NOT NULL,
                leverage_max DOUBLE NOT NULL,
                min_weight DOUBLE NOT NULL,
                max_weight DOUBLE NOT NULL,

                drawdown_redeploy_threshold DOUBLE NOT NULL,
                weight_deviation_threshold DOUBLE NOT NULL,
                volatility_lookback_days INTEGER NOT NULL,
                volatility_redeploy_threshold DOUBLE NOT NULL,
                gradual_deploy_factor DOUBLE NOT NULL,

                use_dynamic_sharpe_rebalance BOOLEAN NOT NULL,
                mean_return_shrinkage DOUBLE NOT NULL,
                risk_free_rate DOUBLE NOT NULL,
                yearly_trading_days INTEGER NOT NULL,

                target_weights_json VARCHAR,

                -- Bumped on every positions write (optimistic concurrency)
                positions_version INTEGER NOT NULL DEFAULT 0,
                updated_at TIMESTAMP
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS positions (
                portfolio_id VARCHAR NOT NULL,
                asset_id VARCHAR NOT NULL,
                quantity DOUBLE NOT NULL,
                avg_price DOUBLE NOT NULL,
                exposure_usd DOUBLE,
                updated_at TIMESTAMP,

                PRIMARY KEY (portfolio_id, asset_id)
            )
        """)

        # Daily metrics snapshots (equity is authoritative here)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS metrics_timeseries (
                portfolio_id VARCHAR NOT NULL,
                date DATE NOT NULL,

                equity DOUBLE NOT NULL,
                exposure DOUBLE,
                leverage DOUBLE,
                drawdown DOUBLE,
                margin_ratio DOUBLE,
                peak_equity DOUBLE,

                metadata_json VARCHAR,

                PRIMARY KEY (portfolio_id, date)
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS rebalance_events (
                id VARCHAR PRIMARY KEY,
                portfolio_id VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                triggered_by VARCHAR NOT NULL,
                target_leverage DOUBLE NOT NULL
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS rebalance_positions (
                rebalance_event_id VARCHAR NOT NULL,
                asset_id VARCHAR NOT NULL,
                target_weight DOUBLE NOT NULL,
                target_usd DOUBLE NOT NULL,
                delta_quantity DOUBLE NOT NULL
            )
        """)

        logger.info("duckdb_schema_initialized")

    # =========================================================================
    # Assets and Prices
    # =========================================================================

    def upsert_asset(self, asset: Asset) -> None:
        """Insert or update an asset."""
        with self._lock:
            self.conn.execute("""
                INSERT INTO assets (id, symbol, name)
                VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET name = excluded.name
            """, [asset.asset_id, asset.symbol, asset.name])

    def list_assets(self) -> list[Asset]:
        """All known assets, ordered by symbol."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT id, symbol, name FROM assets ORDER BY symbol"
            ).fetchall()

        return [Asset(asset_id=r[0], symbol=r[1], name=r[2] or "") for r in rows]

    def get_asset_by_symbol(self, symbol: str) -> Asset:
        """Look up an asset by symbol. Raises NotFoundError if absent."""
        with self._lock:
            row = self.conn.execute(
                "SELECT id, symbol, name FROM assets WHERE symbol = ?", [symbol]
            ).fetchone()

        if row is None:
            raise NotFoundError(f"Asset not found: {symbol}")
        return Asset(asset_id=row[0], symbol=row[1], name=row[2] or "")

    def insert_prices(self, asset_id: str, closes: Sequence[tuple[date, float]]) -> int:
        """
        Insert daily closes for an asset.

        Args:
            asset_id: Asset ID
            closes: (date, close) pairs

        Returns:
            Number of rows written
        """
        if not closes:
            return 0

        with self._lock:
            self.conn.executemany("""
                INSERT INTO asset_prices (asset_id, date, close)
                VALUES (?, ?, ?)
                ON CONFLICT (asset_id, date) DO UPDATE SET close = excluded.close
            """, [[asset_id, day, float(close)] for day, close in closes])

        logger.debug("prices_inserted", asset_id=asset_id, count=len(closes))
        return len(closes)

    def latest(self, asset_id: str) -> Optional[float]:
        """Most recent close for an asset, or None."""
        with self._lock:
            row = self.conn.execute("""
                SELECT close FROM asset_prices
                WHERE asset_id = ?
                ORDER BY date DESC
                LIMIT 1
            """, [asset_id]).fetchone()

        return float(row[0]) if row else None

    def history(self, asset_id: str) -> list[float]:
        """All closes for an asset, oldest first."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT close FROM asset_prices
                WHERE asset_id = ?
                ORDER BY date
            """, [asset_id]).fetchall()

        return [float(r[0]) for r in rows]

    # =========================================================================
    # Portfolio Configuration
    # =========================================================================

    def create_portfolio(
        self,
        portfolio_id: str,
        name: str,
        config: PortfolioConfiguration,
    ) -> None:
        """Create a portfolio with a validated configuration."""
        config.validate()

        columns = ", ".join(CONFIG_COLUMNS)
        placeholders = ", ".join("?" for _ in CONFIG_COLUMNS)

        with self._lock:
            self.conn.execute(f"""
                INSERT INTO portfolios
                (id, name, {columns}, target_weights_json, positions_version, updated_at)
                VALUES (?, ?, {placeholders}, ?, 0, ?)
            """, [
                portfolio_id,
                name,
                *[getattr(config, c) for c in CONFIG_COLUMNS],
                encode_target_weights(config.target_weights),
                _utc_now(),
            ])

        logger.info("portfolio_created", portfolio_id=portfolio_id, name=name)

    def save_configuration(self, portfolio_id: str, config: PortfolioConfiguration) -> None:
        """
        Validate and persist a configuration.

        Raises:
            ConfigurationError: if the configuration is invalid
            NotFoundError: if the portfolio does not exist
        """
        config.validate()

        assignments = ", ".join(f"{c} = ?" for c in CONFIG_COLUMNS)

        with self._lock:
            self._require_portfolio(portfolio_id)
            self.conn.execute(f"""
                UPDATE portfolios
                SET {assignments}, target_weights_json = ?, updated_at = ?
                WHERE id = ?
            """, [
                *[getattr(config, c) for c in CONFIG_COLUMNS],
                encode_target_weights(config.target_weights),
                _utc_now(),
                portfolio_id,
            ])

        logger.info("portfolio_configuration_saved", portfolio_id=portfolio_id)

    def get(self, portfolio_id: str) -> PortfolioConfiguration:
        """
        Configuration for a portfolio.

        Raises:
            NotFoundError: if the portfolio does not exist
        """
        columns = ", ".join(CONFIG_COLUMNS)

        with self._lock:
            row = self.conn.execute(f"""
                SELECT {columns}, target_weights_json
                FROM portfolios
                WHERE id = ?
            """, [portfolio_id]).fetchone()

        if row is None:
            raise NotFoundError(f"Portfolio not found: {portfolio_id}")

        values: dict[str, Any] = dict(zip(CONFIG_COLUMNS, row[:-1]))
        values["target_weights"] = decode_target_weights(row[-1])

        return PortfolioConfiguration.from_dict(values)

    def _require_portfolio(self, portfolio_id: str) -> int:
        """Current positions version; raises NotFoundError if absent."""
        row = self.conn.execute(
            "SELECT positions_version FROM portfolios WHERE id = ?", [portfolio_id]
        ).fetchone()

        if row is None:
            raise NotFoundError(f"Portfolio not found: {portfolio_id}")
        return int(row[0])

    # =========================================================================
    # Positions
    # =========================================================================

    def list_by_portfolio(self, portfolio_id: str) -> list[Position]:
        """Current positions of a portfolio, ordered by symbol."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT p.asset_id, a.symbol, p.quantity, p.avg_price
                FROM positions p
                JOIN assets a ON a.id = p.asset_id
                WHERE p.portfolio_id = ?
                ORDER BY a.symbol
            """, [portfolio_id]).fetchall()

        return [
            Position(asset_id=r[0], symbol=r[1], quantity=float(r[2]), avg_price=float(r[3]))
            for r in rows
        ]

    def positions_version(self, portfolio_id: str) -> int:
        """Version counter bumped on every positions write."""
        with self._lock:
            return self._require_portfolio(portfolio_id)

    def upsert_position(
        self,
        portfolio_id: str,
        asset_id: str,
        quantity: float,
        avg_price: float,
    ) -> int:
        """
        Set a single position (manual update). Returns the new version.
        """
        return self._write_positions(
            portfolio_id,
            [TargetPosition(asset_id, quantity, avg_price, quantity * avg_price)],
            expected_version=None,
        )

    def apply(
        self,
        portfolio_id: str,
        targets: Sequence[TargetPosition],
        expected_version: int,
    ) -> int:
        """
        Overwrite positions with targets if the version still matches.

        Quantity, average price and exposure are replaced, not adjusted.

        Returns:
            New positions version

        Raises:
            StaleProposalError: if positions changed since expected_version
            NotFoundError: if the portfolio does not exist
        """
        return self._write_positions(portfolio_id, targets, expected_version)

    def _write_positions(
        self,
        portfolio_id: str,
        targets: Sequence[TargetPosition],
        expected_version: Optional[int],
    ) -> int:
        with self._lock:
            self.conn.begin()
            try:
                current_version = self._require_portfolio(portfolio_id)

                if expected_version is not None and current_version != expected_version:
                    raise StaleProposalError(portfolio_id, expected_version, current_version)

                now = _utc_now()
                for target in targets:
                    self.conn.execute("""
                        INSERT INTO positions
                        (portfolio_id, asset_id, quantity, avg_price, exposure_usd, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT (portfolio_id, asset_id) DO UPDATE SET
                            quantity = excluded.quantity,
                            avg_price = excluded.avg_price,
                            exposure_usd = excluded.exposure_usd,
                            updated_at = excluded.updated_at
                    """, [
                        portfolio_id,
                        target.asset_id,
                        target.quantity,
                        target.avg_price,
                        target.exposure,
                        now,
                    ])

                new_version = current_version + 1
                self.conn.execute(
                    "UPDATE portfolios SET positions_version = ? WHERE id = ?",
                    [new_version, portfolio_id],
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

        logger.debug(
            "positions_written",
            portfolio_id=portfolio_id,
            count=len(targets),
            version=new_version,
        )
        return new_version

    # =========================================================================
    # Metrics
    # =========================================================================

    def record_snapshot(
        self,
        portfolio_id: str,
        day: date,
        equity: float,
        exposure: Optional[float] = None,
        leverage: Optional[float] = None,
        drawdown: Optional[float] = None,
        margin_ratio: Optional[float] = None,
        peak_equity: Optional[float] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Insert or replace the metrics snapshot for a day."""
        with self._lock:
            self._upsert_snapshot(
                portfolio_id, day, equity, exposure, leverage,
                drawdown, margin_ratio, peak_equity, metadata,
            )

    def _upsert_snapshot(
        self,
        portfolio_id: str,
        day: date,
        equity: float,
        exposure: Optional[float],
        leverage: Optional[float],
        drawdown: Optional[float],
        margin_ratio: Optional[float],
        peak_equity: Optional[float],
        metadata: Optional[dict],
    ) -> None:
        self.conn.execute("""
            INSERT INTO metrics_timeseries
            (portfolio_id, date, equity, exposure, leverage, drawdown,
             margin_ratio, peak_equity, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (portfolio_id, date) DO UPDATE SET
                equity = excluded.equity,
                exposure = excluded.exposure,
                leverage = excluded.leverage,
                drawdown = excluded.drawdown,
                margin_ratio = excluded.margin_ratio,
                peak_equity = excluded.peak_equity,
                metadata_json = excluded.metadata_json
        """, [
            portfolio_id,
            day,
            equity,
            exposure,
            leverage,
            drawdown,
            margin_ratio,
            peak_equity,
            json.dumps(metadata) if metadata is not None else None,
        ])

    def recent_equity(self, portfolio_id: str, n: int) -> list[EquitySnapshot]:
        """The n most recent equity snapshots, newest first."""
        with self._lock:
            rows = self.conn.execute(f"""
                SELECT date, equity, peak_equity
                FROM metrics_timeseries
                WHERE portfolio_id = ?
                ORDER BY date DESC
                LIMIT {int(n)}
            """, [portfolio_id]).fetchall()

        return [
            EquitySnapshot(
                date=r[0],
                equity=float(r[1]),
                peak_equity=float(r[2]) if r[2] is not None else None,
            )
            for r in rows
        ]

    def get_snapshot_metadata(self, portfolio_id: str, day: date) -> Optional[dict]:
        """Decoded metadata of a day's snapshot, if any."""
        with self._lock:
            row = self.conn.execute("""
                SELECT metadata_json FROM metrics_timeseries
                WHERE portfolio_id = ? AND date = ?
            """, [portfolio_id, day]).fetchone()

        if row is None or row[0] is None:
            return None
        return json.loads(row[0])

    # =========================================================================
    # Rebalance Journal
    # =========================================================================

    def record_rebalance(
        self,
        portfolio_id: str,
        proposal,
        triggered_by: str = "user",
    ) -> str:
        """
        Record an accepted proposal.

        Writes the rebalance event, one row per target position, and today's
        metrics snapshot with the proposal's decision metadata.

        Returns:
            Rebalance event ID
        """
        event_id = str(uuid.uuid4())
        now = _utc_now()
        summary = proposal.summary

        composition = [
            {
                "symbol": p.asset_symbol,
                "name": p.asset_name,
                "weight": p.target_weight,
                "value": p.target_value,
                "delta": p.delta_value,
                "action": p.action.value,
            }
            for p in proposal.positions
        ]
        metadata = {
            "rebalance_event_id": event_id,
            "deploy_fraction": proposal.deploy_fraction,
            "drawdown": proposal.drawdown,
            "weight_deviation": proposal.weight_deviation,
            "realized_volatility": proposal.realized_volatility,
            "weights_used": proposal.weights_used,
            "dynamic_weights": proposal.dynamic_weights_computed,
            "composition": composition,
        }
        margin_ratio = (
            summary.new_equity / summary.new_exposure if summary.new_exposure > 0 else 1.0
        )

        with self._lock:
            self.conn.begin()
            try:
                self.conn.execute("""
                    INSERT INTO rebalance_events
                    (id, portfolio_id, created_at, triggered_by, target_leverage)
                    VALUES (?, ?, ?, ?, ?)
                """, [event_id, portfolio_id, now, triggered_by, proposal.target_leverage])

                if proposal.positions:
                    self.conn.executemany("""
                        INSERT INTO rebalance_positions
                        (rebalance_event_id, asset_id, target_weight, target_usd, delta_quantity)
                        VALUES (?, ?, ?, ?, ?)
                    """, [
                        [event_id, p.asset_id, p.target_weight, p.target_value, p.delta_quantity]
                        for p in proposal.positions
                    ])

                self._upsert_snapshot(
                    portfolio_id,
                    now.date(),
                    summary.new_equity,
                    summary.new_exposure,
                    summary.new_leverage,
                    proposal.drawdown,
                    margin_ratio,
                    max(proposal.peak_equity, summary.new_equity),
                    metadata,
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

        logger.info(
            "rebalance_recorded",
            portfolio_id=portfolio_id,
            rebalance_event_id=event_id,
            positions=len(proposal.positions),
        )
        return event_id

    def list_rebalance_events(self, portfolio_id: str) -> list[dict]:
        """Rebalance events of a portfolio, newest first."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT id, created_at, triggered_by, target_leverage
                FROM rebalance_events
                WHERE portfolio_id = ?
                ORDER BY created_at DESC
            """, [portfolio_id]).fetchall()

        return [
            {
                "id": r[0],
                "created_at": r[1],
                "triggered_by": r[2],
                "target_leverage": r[3],
            }
            for r in rows
        ]

    def list_rebalance_positions(self, rebalance_event_id: str) -> list[dict]:
        """Target positions recorded for a rebalance event."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT asset_id, target_weight, target_usd, delta_quantity
                FROM rebalance_positions
                WHERE rebalance_event_id = ?
                ORDER BY asset_id
            """, [rebalance_event_id]).fetchall()

        return [
            {
                "asset_id": r[0],
                "target_weight": r[1],
                "target_usd": r[2],
                "delta_quantity": r[3],
            }
            for r in rows
        ]

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
        logger.info("duckdb_store_closed", path=self.db_path)
