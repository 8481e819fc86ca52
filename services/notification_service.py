"""
Notification Service

Best-effort side channel for the payment back office:
- In-app notifications on the florist / organization dashboards
- Transactional email through the external email function

Nothing here may fail a settlement or refund. Every error is logged
and swallowed.
"""

import os
import requests
import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import FloristNotification, OrganizationNotification, RecipientType

logger = logging.getLogger(__name__)


class EmailType:
    ORDER_CONFIRMATION = "order_confirmation"
    PAYOUT_CONFIRMATION = "payout_confirmation"
    REFUND_NOTIFICATION = "refund_notification"


class NotificationService:
    """In-app and email notifications."""

    def __init__(self):
        """Initialize with email function settings from environment."""
        self.email_url = os.getenv('EMAIL_FUNCTION_URL', '')
        self.email_token = os.getenv('EMAIL_FUNCTION_TOKEN', '')
        self.email_timeout = float(os.getenv('EMAIL_TIMEOUT_SECONDS', '10'))
        self.app_url = os.getenv('APP_URL', 'http://localhost:5173').rstrip('/')

        if not self.email_url:
            logger.info("Notifications: EMAIL_FUNCTION_URL not set, emails will be skipped")

    def settings_link(self, recipient_type: str) -> str:
        """Dashboard settings page where a recipient connects Stripe."""
        if recipient_type == RecipientType.FLORIST:
            return "/florist/settings"
        return "/org/settings"

    def notify_recipient(
        self,
        db: Session,
        recipient_type: str,
        recipient_id: str,
        title: str,
        message: str,
        notification_type: str = "info",
        link_url: Optional[str] = None
    ) -> bool:
        """
        Insert an in-app notification for a florist or organization.

        Returns:
            True if the notification was stored
        """
        if recipient_type == RecipientType.FLORIST:
            notification = FloristNotification(florist_id=recipient_id)
        elif recipient_type == RecipientType.ORGANIZATION:
            notification = OrganizationNotification(organization_id=recipient_id)
        else:
            logger.error(f"Notifications: Unknown recipient type {recipient_type}")
            return False

        notification.title = title
        notification.message = message
        notification.notification_type = notification_type
        notification.link_url = link_url

        try:
            db.add(notification)
            db.commit()
            logger.info(f"Notifications: '{title}' sent to {recipient_type} {recipient_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Notifications: Failed to notify {recipient_type} {recipient_id}: {e}")
            return False

    def send_email(self, email_type: str, to: Optional[str], data: Dict) -> bool:
        """
        Send a transactional email via the email function.

        Args:
            email_type: One of EmailType
            to: Recipient address (skipped when empty)
            data: Template variables

        Returns:
            True if the email function accepted the request
        """
        if not to:
            logger.info(f"Email: No recipient for {email_type}, skipping")
            return False

        if not self.email_url:
            logger.info(f"Email: Not configured, skipping {email_type} to {to}")
            return False

        headers = {'Content-Type': 'application/json'}
        if self.email_token:
            headers['Authorization'] = f'Bearer {self.email_token}'

        try:
            response = requests.post(
                self.email_url,
                json={'type': email_type, 'to': to, 'data': data},
                headers=headers,
                timeout=self.email_timeout
            )
            response.raise_for_status()
            logger.info(f"Email: {email_type} sent to {to}")
            return True
        except requests.RequestException as e:
            logger.error(f"Email: Failed to send {email_type} to {to}: {e}")
            return False


# Singleton instance
notification_service = NotificationService()


def get_notification_service() -> NotificationService:
    """FastAPI dependency returning the shared notification service."""
    return notification_service
