"""
Activity Analyzer

Matches an ActivityDelta against the tracked set. Only the transaction's
sender is the monitored actor: a delta whose `from` is not tracked never
produces activity, even when its recipient is tracked.
"""

import logging

from ..models import Activity, ActivityDelta, ActivityEntry, TrackedSnapshot

logger = logging.getLogger(__name__)


class ActivityAnalyzer:

    def __init__(self, native_symbol: str = "BNB"):
        self.native_symbol = native_symbol

    def analyze(self, delta: ActivityDelta, snapshot: TrackedSnapshot) -> Activity:
        """
        Build the sent/received view for the transaction's sender.

        Sent: the native amount (if any) plus every token change leaving
        the sender. Received: every token change arriving at the sender
        (e.g. the output leg of a swap).

        Args:
            delta: Classified transaction
            snapshot: Frozen tracked set and name index

        Returns:
            Activity (has_activity is False when nothing matched)
        """
        actor = delta.from_address
        activity = Activity(
            has_activity=False,
            node_name=snapshot.name_of(actor) if actor else "Unknown",
            node_address=actor,
            delta=delta,
        )

        if actor not in snapshot:
            return activity

        if delta.has_native_transfer:
            activity.sent.append(ActivityEntry(
                kind="native",
                value=delta.native_change.to_delta,
                counterparty=delta.to_address,
                symbol=self.native_symbol,
            ))

        for change in delta.token_changes:
            if change.from_address == actor:
                activity.sent.append(ActivityEntry(
                    kind="token",
                    value=change.formatted_value,
                    counterparty=change.to_address,
                    symbol=change.symbol,
                    token_address=change.token_address,
                ))
            if change.to_address == actor:
                activity.received.append(ActivityEntry(
                    kind="token",
                    value=change.formatted_value,
                    counterparty=change.from_address,
                    symbol=change.symbol,
                    token_address=change.token_address,
                ))

        activity.has_activity = bool(activity.sent or activity.received)
        if activity.has_activity:
            logger.debug(
                f"{activity.node_name} ({actor}) in {delta.hash}: "
                f"{len(activity.sent)} sent, {len(activity.received)} received"
            )
        return activity
