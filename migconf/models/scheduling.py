"""
Migration Conference Platform
Scheduling & reminder settings models.

Models:
    - ReminderSetting: singleton row controlling pending-conference reminders
    - ScheduledJob:    persisted schedule registry (run history + config)
"""

from datetime import datetime, timezone

from flask import current_app

from migconf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = {"active", "paused", "completed", "failed"}


class ReminderSetting(db.Model):
    """
    Operator-level reminder preferences.

    A single row is kept; it is created lazily from the REMINDER_* config
    defaults the first time it is read.
    """

    __tablename__ = "reminder_settings"

    id = db.Column(db.Integer, primary_key=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    days_threshold = db.Column(db.Integer, nullable=False, default=3,
                               comment="Days a conference may stay unanswered before reminding")
    auto_send = db.Column(db.Boolean, nullable=False, default=False,
                          comment="Email the client automatically instead of alerting only")

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @classmethod
    def current(cls):
        """Return the settings row, creating it from config on first use."""
        setting = db.session.query(cls).order_by(cls.id).first()
        if setting is None:
            cfg = current_app.config
            setting = cls(
                enabled=cfg.get("REMINDER_ENABLED", True),
                days_threshold=cfg.get("REMINDER_DAYS_THRESHOLD", 3),
                auto_send=cfg.get("REMINDER_AUTO_SEND", False),
            )
            db.session.add(setting)
            db.session.flush()
        return setting

    def to_dict(self):
        return {
            "enabled": self.enabled,
            "days_threshold": self.days_threshold,
            "auto_send": self.auto_send,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ReminderSetting enabled={self.enabled} days={self.days_threshold}>"


class ScheduledJob(db.Model):
    """
    Registry of scheduled background jobs.

    Tracks job configuration, last run time, and run history.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: conference_notification_sweep, ...")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="interval",
                              comment="interval, cron, once")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active",
                       comment="active, paused, completed, failed")
    is_enabled = db.Column(db.Boolean, default=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True,
                                comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
