"""Lifecycle notifications for test runs.

Notifications are a side artifact of the pipeline: failing to write one never
affects the run it describes.
"""

import logging
import uuid

from runwatch.errors import StoreError
from runwatch.models import Notification
from runwatch.store import RunStore

logger = logging.getLogger(__name__)

NOTIFY_TEST_START = "test_start"
NOTIFY_TEST_END = "test_end"


def extract_test_id(title: str) -> str | None:
    """Extract the test id prefix from a title like ``"TEST-001 - Login"``.

    The id is the text before the first `` - `` separator, or before the
    first ``-`` when there is no spaced separator.
    """
    if not title:
        return None
    head = title.split(" - ", 1)[0] if " - " in title else title.split("-", 1)[0]
    return head.strip() or None


class NotificationService:
    """Create and read notifications stored alongside test cases."""

    def __init__(self, store: RunStore) -> None:
        self.store = store

    def add(self, test_id: str, title: str, message: str, type: str) -> Notification | None:
        """Store a new unread notification.

        Returns:
            The stored notification, or None if the store rejected it.
        """
        notification = Notification(
            id=uuid.uuid4().hex,
            test_id=test_id,
            title=title,
            message=message,
            type=type,
        )
        try:
            self.store.insert_notification(notification)
        except StoreError as e:
            logger.error("Error adding notification for %s: %s", test_id, e.message)
            return None
        return notification

    def notify_test_start(self, test_id: str, project: str) -> Notification | None:
        return self.add(
            test_id,
            title=f"Test started: {project}",
            message=f"[{test_id}] Test started successfully.",
            type=NOTIFY_TEST_START,
        )

    def notify_test_end(
        self, test_id: str, project: str, passed: int, failed: int
    ) -> Notification | None:
        return self.add(
            test_id,
            title=f"Test finished: {project}",
            message=f"Total {passed + failed}, Pass: {passed}, Fail: {failed}",
            type=NOTIFY_TEST_END,
        )

    def list_all(self, limit: int | None = None) -> list[Notification]:
        """All notifications, newest first."""
        return self.store.list_notifications(limit=limit)

    def unread(self, user_id: str) -> list[Notification]:
        return [n for n in self.list_all() if not n.is_read_by(user_id)]

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        """Add user_id to one notification's readers.

        Returns:
            False if user_id is empty or the notification does not exist.
        """
        if not user_id:
            return False
        return self.store.add_notification_reader(notification_id, user_id)

    def mark_all_read(self, user_id: str) -> int:
        """Mark every notification not yet read by user_id as read.

        Lists all notifications and filters client-side rather than relying on
        a store-side "not read by" query.

        Returns:
            Number of notifications updated.
        """
        if not user_id:
            return 0
        updated = 0
        for notification in self.list_all():
            if notification.is_read_by(user_id):
                continue
            if self.store.add_notification_reader(notification.id, user_id):
                updated += 1
        return updated
