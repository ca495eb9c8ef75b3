"""
Migration Conference Platform
Notification Service.

Central service for creating and querying alert-center notifications.
"""

from datetime import datetime, timezone

from migconf.models import db
from migconf.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient="all", conference_id=None, dedup_key=None, commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance.
        """
        notif = Notification(
            conference_id=conference_id,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            dedup_key=dedup_key,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", conference_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if conference_id:
            q = q.filter_by(conference_id=conference_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient="all"):
        """Return count of unread notifications."""
        return Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient="all"):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    @staticmethod
    def delete(notification_id):
        notif = db.session.get(Notification, notification_id)
        if notif:
            db.session.delete(notif)
            db.session.commit()
        return notif
