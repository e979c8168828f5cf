"""Utility functions and helpers."""

from rebalancer.utils.logging import setup_logging

__all__ = ["setup_logging"]
