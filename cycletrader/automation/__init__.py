"""
Live automation package.

Provides the live cycle trader and its polling scheduler.
"""
from .scheduler import PollingScheduler
from .trader import LiveCycleTrader

__all__ = ["PollingScheduler", "LiveCycleTrader"]
