"""Best-effort user notifications.

Notifications are written to the notifications table after the ledger
transaction they describe has committed. A failed write is logged and
dropped; it never fails or rolls back the operation that emitted it.
"""

import uuid
from typing import TYPE_CHECKING

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from rentals.models import Notification, NotificationPayload
from rentals.utils.logging import get_logger

from .dynamodb import from_item, to_item, utc_now

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class NotificationService:
    """Persists notifications for users."""

    TABLE = "notifications"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        payload: NotificationPayload,
    ) -> Notification | None:
        """Store a notification for ``user_id``.

        Returns:
            The stored notification, or None if the write failed
        """
        notification = Notification(
            notification_id=f"NTF-{uuid.uuid4().hex[:12].upper()}",
            user_id=user_id,
            title=title,
            message=message,
            kind=payload.kind,
            payload=payload,
            created_at=utc_now(),
        )
        try:
            self.db.put_item(self.TABLE, to_item(notification))
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "Failed to deliver %s notification to %s: %s",
                payload.kind.value,
                user_id,
                e,
            )
            return None

        logger.debug("Notification %s sent to %s", notification.notification_id, user_id)
        return notification

    def get_user_notifications(self, user_id: str, limit: int = 50) -> list[Notification]:
        """Most recent notifications for a user, newest first."""
        items = self.db.query(
            self.TABLE,
            Key("user_id").eq(user_id),
            index_name="user_id-index",
            limit=limit,
            scan_index_forward=False,
        )
        return [from_item(Notification, item) for item in items]
