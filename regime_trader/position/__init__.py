"""Position lifecycle."""
from regime_trader.position.models import Direction, Position, PositionRuntimeState, RuntimeStateCache
from regime_trader.position.rules import ExitDecision, ExitReason, LifecycleConfig

__all__ = [
    "Direction",
    "Position",
    "PositionRuntimeState",
    "RuntimeStateCache",
    "ExitDecision",
    "ExitReason",
    "LifecycleConfig",
]
