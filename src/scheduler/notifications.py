"""
Notification dispatch for pipeline outcomes. Messages are always logged;
Slack and email delivery are not wired up yet and only log what would be sent.
"""

from collections import deque
from typing import Deque, Optional

from shared.schemas.pipeline import DataUpdateEvent, DataUpdatePipeline, NotificationConfig
from shared.utils.logger import logger


class NotificationDispatcher:
    def __init__(self, config: NotificationConfig):
        self.config = config
        self.sent: Deque[str] = deque(maxlen=100)

    async def notify_success(self, event: DataUpdateEvent) -> None:
        if not self.config.notify_on_success:
            return
        data = event.data
        await self.send_notification(
            f"Pipeline {event.pipeline_id} completed: "
            f"{data.get('records_persisted', 0)} persisted, "
            f"{data.get('records_skipped', 0)} skipped, "
            f"quality {data.get('quality_score', 0)}",
            level="info",
        )

    async def notify_failure(
        self, pipeline: DataUpdatePipeline, error: Optional[BaseException]
    ) -> None:
        if not self.config.notify_on_failure:
            return
        await self.send_notification(
            f"Pipeline {pipeline.id} failed after {pipeline.config.max_retries} attempts: {error}",
            level="error",
        )

    async def notify_quota_warning(self, event: DataUpdateEvent) -> None:
        if not self.config.notify_on_quota_warning:
            return
        data = event.data
        await self.send_notification(
            f"Quota warning for {data.get('provider')}: "
            f"{data.get('current')}/{data.get('daily')} requests used",
            level="warning",
        )

    async def send_notification(self, message: str, level: str = "info") -> None:
        """
        Log the message, then hand it to every enabled channel.

        Args:
            message: Text to send
            level: "info", "warning" or "error"
        """
        log = {"error": logger.error, "warning": logger.warning}.get(level, logger.info)
        log(f"[notification] {message}")
        self.sent.append(message)

        if self.config.enable_slack and self.config.slack_webhook_url:
            logger.info(f"Would send Slack notification to webhook: {message}")
        if self.config.enable_email and self.config.email_recipients:
            logger.info(
                f"Would email {', '.join(self.config.email_recipients)}: {message}"
            )
