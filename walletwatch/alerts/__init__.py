"""
Alerts
======

Telegram sink, delivery queue and message templates.
"""

from .queue import DeliveryQueue
from .telegram import NotificationSink, SinkConfig, TelegramSink, parse_retry_after

__all__ = [
    "DeliveryQueue",
    "NotificationSink",
    "SinkConfig",
    "TelegramSink",
    "parse_retry_after",
]
