"""
Notification / Reminder Engine.

Turns conference state into deduplicated alert-center notifications:

    expired:<conferenceId>          error    link expired, conference not completed
    expiring:<conferenceId>         warning  link expires within EXPIRATION_WARNING_HOURS
    email-failed:<historyEntryId>   error    failed email within FAILED_EMAIL_WINDOW_MINUTES
                                             (older failures are claimed silently)
    stale-pending:<YYYY-MM-DD>      info     one daily summary of conferences pending
                                             longer than the reminder threshold
    reminder:<conferenceId>:<date>  -        at most one reminder email per conference per day
                                             (only when reminders auto_send)

A key is claimed by inserting a NotificationDedupKey row; the unique
constraint decides which of two concurrent sweeps raises the alert. Each
claim commits on its own. ``expired:``/``expiring:`` keys are cleared on link
regeneration, and every key of a conference goes away when it is deleted.

Runs from the scheduler (``conference_notification_sweep``) and after every
conference-set change (``sweep_safely``).
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from migconf.models import db
from migconf.models.conference import Conference, EmailHistoryEntry
from migconf.models.notification import NotificationDedupKey
from migconf.models.scheduling import ReminderSetting
from migconf.services.notification import NotificationService
from migconf.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)


# ── Dedup keys ───────────────────────────────────────────────────────────────


def expired_key(conference_id):
    return f"expired:{conference_id}"


def expiring_key(conference_id):
    return f"expiring:{conference_id}"


def email_failed_key(entry_id):
    return f"email-failed:{entry_id}"


def stale_pending_key(day):
    return f"stale-pending:{day.isoformat()}"


def reminder_key(conference_id, day):
    return f"reminder:{conference_id}:{day.isoformat()}"


def is_claimed(key) -> bool:
    return db.session.execute(
        select(NotificationDedupKey.id).where(NotificationDedupKey.key == key)
    ).first() is not None


def claim(key, conference_id=None) -> bool:
    """Insert the key; return False if it already exists."""
    if is_claimed(key):
        return False
    db.session.add(NotificationDedupKey(key=key, conference_id=conference_id))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.debug("Dedup key %s claimed concurrently", key)
        return False
    return True


def clear_link_keys(conference_id):
    """Forget expiry alerts so a regenerated link is watched from scratch."""
    db.session.execute(
        delete(NotificationDedupKey).where(
            NotificationDedupKey.key.in_([expired_key(conference_id), expiring_key(conference_id)])
        )
    )


def clear_conference_keys(conference_id):
    db.session.execute(
        delete(NotificationDedupKey).where(NotificationDedupKey.conference_id == conference_id)
    )


def _alert(key, *, conference_id=None, **notification):
    """Claim ``key`` and raise the notification in one commit."""
    if not claim(key, conference_id):
        return False
    NotificationService.create(conference_id=conference_id, dedup_key=key, commit=False, **notification)
    db.session.commit()
    return True


# ── Conditions ───────────────────────────────────────────────────────────────


def _check_links(conferences, now, counts):
    window = timedelta(hours=current_app.config.get("EXPIRATION_WARNING_HOURS", 24))
    for conf in conferences:
        if conf.status == "completed":
            continue
        expires = ensure_utc(conf.link_expires_at)
        if now >= expires:
            if _alert(
                expired_key(conf.id), conference_id=conf.id,
                title=f"Link expired: {conf.name}",
                message=f"The access link for {conf.client_name} expired on {expires:%Y-%m-%d %H:%M} UTC.",
                category="link", severity="error",
            ):
                counts["expired"] += 1
        elif expires - now <= window:
            hours = max(int((expires - now).total_seconds() // 3600), 0)
            if _alert(
                expiring_key(conf.id), conference_id=conf.id,
                title=f"Link expiring soon: {conf.name}",
                message=f"The access link for {conf.client_name} expires in about {hours} hour(s).",
                category="link", severity="warning",
            ):
                counts["expiring"] += 1


def _check_failed_emails(now, counts):
    window = timedelta(minutes=current_app.config.get("FAILED_EMAIL_WINDOW_MINUTES", 5))
    failed = db.session.execute(
        select(EmailHistoryEntry).where(EmailHistoryEntry.status == "failed")
        .order_by(EmailHistoryEntry.id)
    ).scalars().all()
    for entry in failed:
        key = email_failed_key(entry.id)
        if is_claimed(key):
            continue
        if now - ensure_utc(entry.sent_at) > window:
            if claim(key, entry.conference_id):
                db.session.commit()
                counts["email_failed_silenced"] += 1
            continue
        if _alert(
            key, conference_id=entry.conference_id,
            title=f"Email failed: {entry.type}",
            message=f"Email to {entry.to} could not be sent: {entry.error or 'unknown error'}",
            category="email", severity="error",
        ):
            counts["email_failed"] += 1


def stale_pending_conferences(conferences, now, days_threshold):
    cutoff = now - timedelta(days=days_threshold)
    return [
        c for c in conferences
        if c.status == "pending" and ensure_utc(c.created_at) < cutoff
    ]


def _check_stale_pending(conferences, now, counts):
    setting = ReminderSetting.current()
    if not setting.enabled:
        return
    stale = stale_pending_conferences(conferences, now, setting.days_threshold)
    if not stale:
        return
    if _alert(
        stale_pending_key(now.date()),
        title=f"{len(stale)} conference(s) pending",
        message=(
            f"{len(stale)} conference(s) have been waiting for the client for more than "
            f"{setting.days_threshold} day(s)."
        ),
        category="reminder", severity="info",
    ):
        counts["stale_pending"] += 1


# ── Entry points ─────────────────────────────────────────────────────────────


def sweep(now=None) -> dict:
    """Evaluate every alert condition once; return how many alerts fired."""
    now = now or datetime.now(timezone.utc)
    counts = {"expired": 0, "expiring": 0, "email_failed": 0, "email_failed_silenced": 0, "stale_pending": 0}
    conferences = db.session.execute(select(Conference).order_by(Conference.id)).scalars().all()

    _check_links(conferences, now, counts)
    _check_failed_emails(now, counts)
    _check_stale_pending(conferences, now, counts)
    db.session.commit()

    if any(counts.values()):
        logger.info("Notification sweep: %s", counts)
    return counts


def sweep_safely(now=None):
    """Run ``sweep`` without ever failing the caller."""
    try:
        return sweep(now)
    except Exception:
        db.session.rollback()
        logger.exception("Notification sweep failed")
        return None


def dispatch_reminders(now=None) -> dict:
    """Email stale pending conferences, at most once per conference per day."""
    from migconf.services.access_link import is_expired
    from migconf.services.email_service import EmailService

    now = now or datetime.now(timezone.utc)
    result = {"sent": 0, "failed": 0, "skipped": 0}
    setting = ReminderSetting.current()
    db.session.commit()
    if not (setting.enabled and setting.auto_send):
        return result

    conferences = db.session.execute(
        select(Conference).where(Conference.status == "pending").order_by(Conference.id)
    ).scalars().all()
    for conf in stale_pending_conferences(conferences, now, setting.days_threshold):
        if is_expired(conf, now=now):
            result["skipped"] += 1
            continue
        if not claim(reminder_key(conf.id, now.date()), conf.id):
            continue
        db.session.commit()
        email = EmailService.send_conference_email(conf, "reminder")
        if not email.attempted:
            result["skipped"] += 1
        elif email.success:
            result["sent"] += 1
        else:
            result["failed"] += 1
    if result["sent"] or result["failed"]:
        logger.info("Reminder dispatch: %s", result)
    return result
