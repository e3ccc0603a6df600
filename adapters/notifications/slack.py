"""Slack incoming-webhook channel for staff alerts."""

from typing import Any

import httpx

from risk_monitor.domain.errors import NotificationDeliveryError
from risk_monitor.domain.models import AlertNotification, RiskLevel
from risk_monitor.services.common import logger

# Slack section blocks reject text longer than 3000 characters
MAX_SECTION_TEXT = 3000

_LEVEL_EMOJI = {
    RiskLevel.LOW: ":information_source:",
    RiskLevel.MEDIUM: ":warning:",
    RiskLevel.HIGH: ":red_circle:",
    RiskLevel.CRITICAL: ":rotating_light:",
}


def build_slack_payload(alert: AlertNotification) -> dict[str, Any]:
    return {
        "text": alert.title,
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{_LEVEL_EMOJI[alert.level]} {alert.title}"[:150],
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": alert.body[:MAX_SECTION_TEXT] or "-"},
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"*Patients:* {', '.join(alert.patient_ids)}"}
                ],
            },
        ],
    }


class SlackWebhookChannel:
    channel_name = "slack"

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._client = client
        self.logger = logger.bind(component="slack_channel")

    async def send(self, alert: AlertNotification) -> None:
        payload = build_slack_payload(alert)
        try:
            if self._client is not None:
                response = await self._client.post(self.webhook_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Slack webhook request failed: {e}") from e

        if response.is_error:
            raise NotificationDeliveryError(
                f"Slack webhook returned {response.status_code}: {response.text[:200]}"
            )
        self.logger.info("slack_alert_sent", title=alert.title)
