"""Trade performance tracking."""
from regime_trader.performance.tracker import PerformanceTracker, StrategyStats

__all__ = ["PerformanceTracker", "StrategyStats"]
