"""
Migration Conference Platform
Notification domain model.

Models:
    - Notification:         in-app alert record with read tracking
    - NotificationDedupKey: claimed event keys; one alert per key, ever
"""

from datetime import datetime, timezone

from migconf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"conference", "link", "email", "reminder", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per operator-facing event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    conference_id = db.Column(
        db.Integer, db.ForeignKey("conferences.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    recipient = db.Column(db.String(150), default="all", index=True, comment="Operator name or 'all' for broadcast")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")
    dedup_key = db.Column(db.String(200), nullable=True, index=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "conference_id": self.conference_id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "dedup_key": self.dedup_key,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class NotificationDedupKey(db.Model):
    """
    Persisted "already alerted" marker.

    The unique constraint on ``key`` is what makes alert claims atomic across
    concurrent sweeps. Rows tied to a conference go away with it.
    """

    __tablename__ = "notification_dedup_keys"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(200), unique=True, nullable=False)
    conference_id = db.Column(
        db.Integer, db.ForeignKey("conferences.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<NotificationDedupKey {self.key}>"
