"""
Migration Conference Platform
Notification & Scheduling Blueprint.

Provides:
    - Alert center: list, unread count, mark read, mark all read, delete
    - Reminder settings (threshold days, enabled, auto-send)
    - Scheduled job management (list, trigger, toggle)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from migconf.models import db
from migconf.models.scheduling import ReminderSetting, ScheduledJob
from migconf.services.notification import NotificationService
from migconf.services.scheduler_service import SchedulerService
from migconf.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")

register_error_handlers(notification_bp, logger)


# ═══════════════════════════════════════════════════════════════════════════
#  ALERT CENTER
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List notifications, newest first. Filters: recipient, conference_id, unread_only."""
    items, total = NotificationService.list_for_recipient(
        recipient=request.args.get("recipient", "all"),
        conference_id=request.args.get("conference_id", type=int),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=min(request.args.get("limit", 50, type=int), 200),
        offset=max(request.args.get("offset", 0, type=int), 0),
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    recipient = request.args.get("recipient", "all")
    return jsonify({"unread_count": NotificationService.unread_count(recipient)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_read(nid):
    notif = NotificationService.mark_read(nid)
    if not notif:
        return jsonify({"error": "Notification not found"}), 404
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    data = request.get_json(silent=True) or {}
    count = NotificationService.mark_all_read(data.get("recipient", "all"))
    return jsonify({"marked_read": count})


@notification_bp.route("/notifications/<int:nid>", methods=["DELETE"])
def delete_notification(nid):
    if not NotificationService.delete(nid):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"deleted": True, "id": nid})


# ═══════════════════════════════════════════════════════════════════════════
#  REMINDER SETTINGS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/reminder-settings", methods=["GET"])
def get_reminder_settings():
    setting = ReminderSetting.current()
    db.session.commit()
    return jsonify(setting.to_dict())


@notification_bp.route("/reminder-settings", methods=["PUT"])
def update_reminder_settings():
    data = request.get_json(silent=True) or {}
    setting = ReminderSetting.current()

    if "days_threshold" in data:
        days = data["days_threshold"]
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            return jsonify({"error": "days_threshold must be a positive integer"}), 400
        setting.days_threshold = days
    for field in ("enabled", "auto_send"):
        if field in data:
            if not isinstance(data[field], bool):
                return jsonify({"error": f"{field} must be true or false"}), 400
            setattr(setting, field, data[field])

    db.session.commit()
    logger.info("Reminder settings updated: %s", setting.to_dict())
    return jsonify(setting.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    """List all registered scheduled jobs with their status."""
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"items": jobs, "total": len(jobs)})


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    job = ScheduledJob.query.filter_by(job_name=job_name).first()
    if not job:
        return jsonify({"error": f"Job '{job_name}' not found"}), 404
    return jsonify(job.to_dict())


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error":
        return jsonify(result), 404
    return jsonify(result)


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    """Enable or disable a scheduled job."""
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return jsonify({"error": "'enabled' field is required (true/false)"}), 400
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        return jsonify({"error": f"Job '{job_name}' not found"}), 404
    return jsonify(result)
