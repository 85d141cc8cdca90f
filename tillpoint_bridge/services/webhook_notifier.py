"""
TillPoint Bridge — Webhook Notifier
Fire-and-forget delivery of session lifecycle events to the POS backend.
"""

import asyncio
from typing import Any

import httpx

from tillpoint_bridge.core.config import Settings
from tillpoint_bridge.models.schemas import WebhookEnvelope
from tillpoint_bridge.services.base import BaseExternalService


class WebhookNotifier(BaseExternalService):
    """
    Posts ``{event, session, data}`` to ``BASE_WEBHOOK_URL``.

    Delivery runs in a background task that callers never await.
    Failures are logged and dropped: no retry, no backoff.
    """

    service_name = "Webhook"

    def __init__(self, settings: Settings | None = None):
        super().__init__(settings)
        self.webhook_url = self.settings.BASE_WEBHOOK_URL
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, event: str, data: Any = None) -> asyncio.Task | None:
        """Schedule delivery of ``event`` and return immediately."""
        if not self.enabled:
            return None

        task = asyncio.get_running_loop().create_task(self._deliver(event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, event: str, data: Any) -> None:
        envelope = WebhookEnvelope(event=event, session=self.settings.SESSION_ID, data=data)
        try:
            async with httpx.AsyncClient(timeout=self.settings.WEBHOOK_TIMEOUT) as client:
                response = await client.post(
                    self.webhook_url,  # type: ignore[arg-type]
                    json=envelope.model_dump(mode="json"),
                    headers={"x-api-key": self.settings.API_KEY},
                )
                response.raise_for_status()
            self.logger.info("Webhook sent: %s", event)
        except Exception as exc:
            self.logger.error("Failed to send webhook: %s %s", event, exc)

    async def aclose(self) -> None:
        """Wait for deliveries still in flight."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
