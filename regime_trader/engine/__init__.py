"""Scan pipeline, scheduler and service wiring."""
from regime_trader.engine.scheduler import SymbolGuard, SymbolOutcome, SymbolResult, TickReport, TickScheduler

__all__ = ["SymbolGuard", "SymbolOutcome", "SymbolResult", "TickReport", "TickScheduler"]
