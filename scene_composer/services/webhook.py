"""Best-effort delivery of a job's terminal result to the caller."""

import logging

import httpx

from scene_composer.config import Settings, get_settings
from scene_composer.exceptions import WebhookDeliveryError
from scene_composer.schemas import CompositionResult

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Single attempt, no retry. Failures are logged and never raised."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    async def notify(self, webhook_url: str, result: CompositionResult) -> bool:
        """POST the result. Returns True if the endpoint answered 2xx."""
        try:
            await self._post(webhook_url, result)
        except WebhookDeliveryError as e:
            logger.warning(f"[WEBHOOK {result.job_id}] {e.message}")
            return False
        logger.info(f"[WEBHOOK {result.job_id}] delivered status={result.status}")
        return True

    async def _post(self, webhook_url: str, result: CompositionResult) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.webhook_timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(webhook_url, json=result.to_payload())
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise WebhookDeliveryError(
                f"Webhook {webhook_url} answered HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(f"Webhook {webhook_url} unreachable: {e}") from e
