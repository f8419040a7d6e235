"""Persistence layer."""
from regime_trader.db.position_store import InMemoryPositionStore, PositionStore, SqlPositionStore

__all__ = ["InMemoryPositionStore", "PositionStore", "SqlPositionStore"]
