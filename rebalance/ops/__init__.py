"""Operational utilities."""

from rebalance.ops.logging import JsonEventLogger

__all__ = ["JsonEventLogger"]
