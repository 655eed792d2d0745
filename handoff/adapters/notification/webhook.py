"""Webhook notification adapter.

Implements NotificationPort by POSTing each domain event as JSON to an
alerting endpoint (pager bridge, chat integration, ops dashboard).
"""

import logging

import httpx

from handoff.adapters.serialization import domain_event_to_dict
from handoff.core.models import DomainEvent, EventKind
from handoff.core.ports import NotificationPort

logger = logging.getLogger(__name__)


class WebhookNotificationAdapter(NotificationPort):
    """Posts domain events to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout_seconds: float = 5.0,
        kinds: frozenset[EventKind] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize webhook notification adapter.

        Args:
            url: Endpoint receiving the events.
            api_key: Optional bearer token sent in the Authorization header.
            timeout_seconds: Per-request timeout.
            kinds: Event kinds to forward (all kinds if None).
            transport: Optional httpx transport, used by tests.
        """
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.kinds = kinds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def publish(self, event: DomainEvent) -> None:
        """POST one event.

        Non-2xx responses are logged; transport failures propagate to the
        caller, which logs them without undoing its own work.
        """
        if self.kinds is not None and event.kind not in self.kinds:
            return

        try:
            client = await self._get_client()
            response = await client.post(self.url, json=domain_event_to_dict(event))
        except httpx.RequestError as e:
            logger.error(
                f"Failed to deliver {event.kind.value} webhook: {e}",
                extra={"order_id": event.order_id, "url": self.url},
            )
            raise

        if response.is_success:
            logger.debug(
                f"Delivered {event.kind.value} webhook ({response.status_code})",
                extra={"order_id": event.order_id},
            )
        else:
            logger.error(
                f"Alert webhook rejected {event.kind.value}: {response.status_code}",
                extra={"order_id": event.order_id, "response": response.text},
            )
