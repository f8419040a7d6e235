"""Operator notifications."""
from regime_trader.notify.telegram import AlertService, LogNotifier, Notifier, TelegramNotifier

__all__ = ["AlertService", "LogNotifier", "Notifier", "TelegramNotifier"]
