"""Utility modules."""
from regime_trader.utils.timeframe import (
    TIMEFRAME_MINUTES,
    TimeframeSpec,
    parse_timeframes,
    longest_timeframes,
)

__all__ = [
    "TIMEFRAME_MINUTES",
    "TimeframeSpec",
    "parse_timeframes",
    "longest_timeframes",
]
