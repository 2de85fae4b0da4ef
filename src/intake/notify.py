"""
Slack incoming-webhook notifications.

Delivery is best effort: failures are logged and never retried.
"""

from typing import Awaitable, Callable, Optional

import httpx
import structlog

from src.intake.config import Config, get_config
from src.intake.extract import IntakeRecord

logger = structlog.get_logger(__name__)

NOT_PROVIDED = "(not provided)"

Notifier = Callable[[IntakeRecord, bool], Awaitable[bool]]


def format_record_message(record: IntakeRecord, *, complete: bool = True) -> str:
    """Render the intake record as Slack mrkdwn text."""
    def _value(value: Optional[str]) -> str:
        return value if value else NOT_PROVIDED

    if complete:
        header = "📞 *New Support Request Received!*"
        footer = "We're working on this issue now."
    else:
        header = "⚠️ *Incomplete Support Call*"
        footer = "The caller hung up before all details were collected."

    return (
        f"{header}\n"
        f"*Name:* {_value(record.name)}\n"
        f"*Email:* {_value(record.email)}\n"
        f"*Problem:* {_value(record.problem)}\n"
        f"*Time:* {_value(record.time)}\n"
        f"*TCP Domain:* {_value(record.tcp)}\n"
        f"\n{footer}"
    )


class SlackNotifier:
    """Posts intake records to a Slack incoming webhook."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

    async def __call__(self, record: IntakeRecord, complete: bool = True) -> bool:
        return await self.send(record, complete=complete)

    async def send(self, record: IntakeRecord, *, complete: bool = True) -> bool:
        """
        Send the record to Slack.

        Returns:
            True if Slack accepted the message
        """
        text = format_record_message(record, complete=complete)

        try:
            async with httpx.AsyncClient(timeout=self.config.notify_timeout_seconds) as client:
                response = await client.post(self.config.slack_webhook_url, json={"text": text})
        except httpx.TimeoutException:
            logger.error("Slack notification timed out", timeout=self.config.notify_timeout_seconds)
            return False
        except httpx.HTTPError as e:
            logger.error("Slack notification failed", error=str(e), error_type=type(e).__name__)
            return False

        if response.status_code >= 400:
            logger.error(
                "Slack rejected notification",
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False

        logger.info("Sent to Slack successfully", complete=complete, status_code=response.status_code)
        return True
