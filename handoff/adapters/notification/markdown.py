"""Markdown file notification adapter.

Implements NotificationPort by appending events to one markdown alert
log per day (YYYY-MM-DD.md). Useful as an audit trail of SLA breaches
and refund reviews.
"""

import asyncio
import logging
from pathlib import Path

from handoff.core.models import DomainEvent
from handoff.core.ports import NotificationPort

logger = logging.getLogger(__name__)


class MarkdownNotificationAdapter(NotificationPort):
    """Appends events to daily markdown alert logs."""

    def __init__(self, report_dir: str):
        """Initialize markdown notification adapter.

        Args:
            report_dir: Directory holding the daily log files.

        Raises:
            ValueError: If report_dir is a filesystem root.
            OSError: If the directory cannot be created.
        """
        self.base_dir = Path(report_dir).resolve()

        if self.base_dir.parent == self.base_dir:
            raise ValueError(f"report_dir cannot be a filesystem root: {report_dir}")

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create report directory {report_dir}: {e}") from e
        self._lock = asyncio.Lock()

    def log_path_for(self, event: DomainEvent) -> Path:
        return self.base_dir / f"{event.occurred_at.strftime('%Y-%m-%d')}.md"

    async def publish(self, event: DomainEvent) -> None:
        """Append an event entry to the day's log file.

        Raises:
            OSError: If the file cannot be written.
        """
        entry = self._format_entry(event)
        path = self.log_path_for(event)

        async with self._lock:
            try:
                await asyncio.to_thread(self._append, path, entry)
            except OSError as e:
                logger.error(
                    f"Failed to write markdown alert log: {e}",
                    extra={"path": str(path)},
                    exc_info=True,
                )
                raise

    async def close(self) -> None:
        return None

    @staticmethod
    def _append(path: Path, entry: str) -> None:
        is_new = not path.exists()
        with path.open("a", encoding="utf-8") as f:
            if is_new:
                f.write(f"# Handoff alerts {path.stem}\n\n")
            f.write(entry)

    @staticmethod
    def _format_entry(event: DomainEvent) -> str:
        """Format one event as a markdown section."""
        lines = [
            f"## {event.occurred_at.strftime('%H:%M:%S')} `{event.kind.value}`",
            "",
            f"- **Order**: {event.order_number or '-'}",
        ]
        if event.order_id:
            lines.append(f"- **Order ID**: `{event.order_id}`")
        for key, value in sorted(event.attributes.items()):
            lines.append(f"- **{key}**: {value}")
        lines.extend(["", ""])
        return "\n".join(lines)
