"""Exchange gateways."""
from regime_trader.exchange.base import (
    ExchangeAuthError,
    ExchangeError,
    ExchangeGateway,
    ExchangePosition,
    ExchangeRejectedError,
    ExchangeTransientError,
    OrderResult,
)
from regime_trader.exchange.paper import PaperGateway

__all__ = [
    "ExchangeAuthError",
    "ExchangeError",
    "ExchangeGateway",
    "ExchangePosition",
    "ExchangeRejectedError",
    "ExchangeTransientError",
    "OrderResult",
    "PaperGateway",
]
