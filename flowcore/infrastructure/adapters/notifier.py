"""Notifier that writes notifications to the structured log."""

import structlog

from flowcore.domain.interfaces.collaborators import Notifier
from flowcore.domain.models.notification import Notification

logger = structlog.get_logger(__name__)


class LoggingNotifier(Notifier):
    """Default Notifier: one structured log line per notification.

    Deployments replace it with a notifier that writes to the in-app
    notification collection and sends the email copy.
    """

    async def notify(self, notification: Notification) -> None:
        logger.info(
            "Notification sent",
            user_id=notification.user_id,
            title=notification.title,
            notification_type=notification.type,
            resource_type=notification.resource_type,
            resource_id=notification.resource_id,
            send_email_copy=notification.send_email_copy,
        )
