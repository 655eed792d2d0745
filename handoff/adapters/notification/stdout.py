"""Stdout notification adapter.

Implements NotificationPort by printing domain events to the terminal
with human-readable formatting.
"""

import asyncio
import logging

from handoff.core.models import DomainEvent, EventKind
from handoff.core.ports import NotificationPort

logger = logging.getLogger(__name__)

# Routine events are only printed in verbose mode.
_ALERT_KINDS = frozenset(
    {
        EventKind.SLA_BREACHED,
        EventKind.ADMISSION_DENIED,
        EventKind.REFUND_PENDING_APPROVAL,
    }
)


class StdoutNotificationAdapter(NotificationPort):
    """Prints domain events to stdout with human-readable formatting."""

    def __init__(self, verbose: bool = False):
        """Initialize stdout notification adapter.

        Args:
            verbose: If True, also print routine events (admissions,
                transitions, refund resolutions) and their attributes.
        """
        self.verbose = verbose

    async def publish(self, event: DomainEvent) -> None:
        """Print an event to stdout."""
        if event.kind not in _ALERT_KINDS and not self.verbose:
            return
        await asyncio.to_thread(print, self._format_event(event, self.verbose))

    async def close(self) -> None:
        return None

    @staticmethod
    def _format_event(event: DomainEvent, verbose: bool) -> str:
        """Format one event as a banner block."""
        is_alert = event.kind in _ALERT_KINDS
        rule = ("=" if is_alert else "-") * 80
        title = event.kind.value.replace("_", " ").upper()
        lines = [
            rule,
            f"{'ALERT: ' if is_alert else ''}{title}",
            rule,
            f"Order: {event.order_number or '-'} ({event.order_id or 'not admitted'})",
            f"At: {event.occurred_at.isoformat()}",
        ]

        if event.kind == EventKind.SLA_BREACHED:
            lines.append(
                f"SLA: {event.attributes.get('sla')} "
                f"(overdue {event.attributes.get('overdue_seconds', 0)}s)"
            )
        elif event.kind == EventKind.ADMISSION_DENIED:
            lines.append(f"Cause: {event.attributes.get('cause')}")
        elif event.kind == EventKind.REFUND_PENDING_APPROVAL:
            lines.append(
                f"Amount: {event.attributes.get('amount')} "
                f"{event.attributes.get('currency', '')} - awaiting ops approval"
            )

        if verbose and event.attributes:
            lines.append("")
            for key, value in sorted(event.attributes.items()):
                lines.append(f"  {key}: {value}")

        lines.append(rule)
        return "\n".join(lines)
