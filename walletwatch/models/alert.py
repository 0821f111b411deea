"""
Outbound alert unit consumed by the DeliveryQueue.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AlertState(Enum):
    """Per-alert delivery state."""
    QUEUED = "queued"
    SENDING = "sending"
    DELIVERED = "delivered"
    REQUEUED = "requeued"
    DROPPED = "dropped"


@dataclass
class Alert:
    destination: str
    body: str
    thread_id: Optional[str] = None
    attempt_count: int = 0
    kind: str = "activity"  # activity / enrollment / error / status
    state: AlertState = AlertState.QUEUED
