"""Risk management."""
from regime_trader.risk.manager import InvariantViolation, OrderSize, RiskConfig, RiskManager

__all__ = ["InvariantViolation", "OrderSize", "RiskConfig", "RiskManager"]
