"""Notification utilities for critical errors."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Handles sending notifications for critical errors."""

    def __init__(self, webhook_url: Optional[str] = None, enabled: Optional[bool] = None):
        """Initialize notification service from arguments or environment."""
        if enabled is None:
            enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_enabled = enabled
        self.notification_webhook = webhook_url or os.getenv("NOTIFICATION_WEBHOOK_URL")

    def send_critical_error_notification(
        self,
        source: str,
        error_message: str,
        context: Optional[dict] = None
    ) -> bool:
        """
        Send notification for critical errors.

        Args:
            source: Component that failed (monitor, sync)
            error_message: The error message
            context: Optional additional context

        Returns:
            True if a webhook accepted the notification
        """
        if not self.notification_enabled:
            logger.info(f"Notifications disabled, skipping notification from {source}")
            return False

        notification_message = (
            f"Critical Error in {source}\n"
            f"Error: {error_message}\n"
        )

        if context:
            notification_message += f"Context: {context}\n"

        logger.warning(f"CRITICAL ERROR NOTIFICATION: {notification_message}")

        if not self.notification_webhook:
            return False

        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(
                    self.notification_webhook,
                    json={
                        "text": notification_message,
                        "source": source,
                        "error": error_message,
                        "context": context or {}
                    }
                )
                response.raise_for_status()
            logger.info(f"Notification sent for {source}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notification: {e}")
            return False
