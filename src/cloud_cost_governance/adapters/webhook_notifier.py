"""HTTP notifier for governance policy webhooks.

Budget-breach notifications are best effort: a slow or failing receiver is
logged and otherwise ignored, and never changes an enforcement result.
"""

from typing import Any

import httpx
import structlog

from cloud_cost_governance.settings import Settings

logger = structlog.get_logger(__name__)


class WebhookNotifier:
    """Async POST of JSON payloads to policy-configured webhook URLs.

    Implements IPolicyNotifier interface from core/interfaces.py.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize WebhookNotifier with service settings.

        Args:
            settings: Service settings containing webhook_timeout_seconds.
        """
        self._timeout = settings.webhook_timeout_seconds

    async def notify(self, url: str, payload: dict[str, Any]) -> bool:
        """POST ``payload`` as JSON to ``url``.

        Returns:
            True if the receiver answered with a 2xx status, False otherwise.
        """
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "policy_webhook_http_error",
                    url=url,
                    status_code=exc.response.status_code,
                )
                return False
            except (httpx.RequestError, httpx.InvalidURL) as exc:
                logger.warning("policy_webhook_connection_error", url=url, error=str(exc))
                return False

        logger.info("policy_webhook_delivered", url=url, payload_event=payload.get("event"))
        return True
