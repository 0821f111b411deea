"""
Alert Templates
===============

HTML message bodies for the Telegram sink.

Alert types:
- Activity: what a tracked wallet sent/received in one transaction
- Enrollment: a new wallet was added to the tracked set
- Error: a loop iteration failed
- Status: service started / stopped summary
"""

from datetime import datetime, timezone
from html import escape
from typing import Mapping, Optional

import pytz

from ..models import Activity, EnrollmentRequest, TrackedNode
from ..utils.units import round_display

DEFAULT_EXPLORER = "https://bscscan.com"


def short_address(address: Optional[str]) -> str:
    if not address:
        return "Unknown"
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def _display_name(address: Optional[str], nicknames: Optional[Mapping[str, str]]) -> str:
    if address and nicknames:
        name = nicknames.get(address.lower())
        if name:
            return escape(name)
    return short_address(address)


def format_timestamp(when: Optional[datetime] = None, tz_name: str = "UTC") -> str:
    when = when or datetime.now(timezone.utc)
    return when.astimezone(pytz.timezone(tz_name)).strftime("%Y-%m-%d %H:%M:%S %Z")


def format_uptime(seconds: float) -> str:
    """Render an uptime as 'Xh Ym Zs'."""
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def format_activity(
    activity: Activity,
    native_symbol: str = "BNB",
    explorer_url: str = DEFAULT_EXPLORER,
    nicknames: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Activity alert: wallet header, Received/Sent lines, tx link.

    Token amounts are rounded to 4 decimals for display; native amounts
    are shown exactly.
    """
    address_url = f"{explorer_url}/address"
    lines = [
        f'<a href="{address_url}/{activity.node_address}">{escape(activity.node_name)}</a> · {native_symbol}'
    ]

    for entry in activity.received:
        source = f'<a href="{address_url}/{entry.counterparty}">{_display_name(entry.counterparty, nicknames)}</a>'
        if entry.kind == "token":
            token = f'<a href="{explorer_url}/token/{entry.token_address}">{escape(entry.symbol)}</a>'
            lines.append(f"Received: {round_display(entry.value)} {token} From {source}")
        else:
            lines.append(f"Received: {entry.value} {entry.symbol} From {source}")

    for entry in activity.sent:
        value = entry.value.lstrip("-")
        target = f'<a href="{address_url}/{entry.counterparty}">{_display_name(entry.counterparty, nicknames)}</a>'
        if entry.kind == "token":
            token = f'<a href="{explorer_url}/token/{entry.token_address}">{escape(entry.symbol)}</a>'
            lines.append(f"Sent: {round_display(value)} {token} To {target}")
        else:
            lines.append(f"Sent: {value} {entry.symbol} To {target}")

    lines.append(f'<a href="{explorer_url}/tx/{activity.delta.hash}">TX hash</a>')
    return "\n".join(lines)


def format_new_wallet(
    node: TrackedNode,
    request: EnrollmentRequest,
    referrer_name: str,
    explorer_url: str = DEFAULT_EXPLORER,
) -> str:
    """Enrollment alert for an auto-added wallet."""
    lines = [
        "<b>🆕 New Wallet Detected</b>",
        "",
        f"<b>Address:</b> <code>{node.wallet}</code>",
        f"<b>Name:</b> {escape(node.name)}",
        f"<b>Referrer:</b> {escape(referrer_name)} (<code>{request.inducing_wallet}</code>)",
        f"<b>Level:</b> {node.level}",
    ]
    if request.amount:
        lines.append(f"<b>Trigger:</b> {round_display(request.amount)} {escape(request.symbol)}")
    if request.tx_hash:
        lines.append(f'<a href="{explorer_url}/tx/{request.tx_hash}">TX hash</a>')
    lines.extend(["", "<b>Added to the tracked set automatically</b>"])
    return "\n".join(lines)


def format_error(error: str, block_number: Optional[int] = None, tz_name: str = "UTC") -> str:
    return "\n".join([
        "<b>❌ Monitor Error</b>",
        "",
        f"<b>Error:</b> {escape(error)}",
        f"<b>Block:</b> {block_number if block_number is not None else 'N/A'}",
        f"<b>Time:</b> {format_timestamp(tz_name=tz_name)}",
    ])


def format_status(status: str, stats: Mapping, tz_name: str = "UTC") -> str:
    """
    Service status summary.

    Args:
        status: "started" or "stopped"
        stats: Output of MonitorService.get_stats()
    """
    emoji = "🟢" if status == "started" else "🔴"
    return "\n".join([
        f"<b>{emoji} Monitor {status.title()}</b>",
        "",
        f"<b>Tracked wallets:</b> {stats.get('monitored_wallets', 0)}",
        f"<b>Latest block:</b> {stats.get('last_processed_block', 'N/A')}",
        f"<b>Processed blocks:</b> {stats.get('processed_blocks', 0)}",
        f"<b>Found transactions:</b> {stats.get('found_transactions', 0)}",
        f"<b>Notifications:</b> {stats.get('sent_notifications', 0)}",
        f"<b>New wallets:</b> {stats.get('new_wallets_added', 0)}",
        f"<b>Uptime:</b> {stats.get('uptime', '0h 0m 0s')}",
        f"<b>Time:</b> {format_timestamp(tz_name=tz_name)}",
    ])
