"""
Storage layer.

- Protocols: what the rebalance service reads and writes
- DuckDB: the persistent implementation of every protocol
- RetryPolicy: retries around storage I/O
"""

from rebalancer.storage.duckdb_store import DuckDBStore
from rebalancer.storage.retry import RetryPolicy

__all__ = ["DuckDBStore", "RetryPolicy"]
