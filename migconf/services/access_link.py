"""
Access-Link Lifecycle.

    generate(ttl_days)            -> (token, expires_at)
    regenerate(conference, ...)   -> replaces the token immediately
    resolve(token)                -> Conference | LinkNotFoundError | LinkExpiredError

Tokens come from ``secrets.token_urlsafe`` (256 bits). There is no revoked
flag: expiry and regeneration are the only ways a link stops working.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from migconf.core.exceptions import LinkExpiredError, LinkNotFoundError, ValidationError
from migconf.models import db
from migconf.models.audit import write_audit
from migconf.models.conference import Conference
from migconf.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def default_ttl_days() -> int:
    return int(current_app.config.get("LINK_TTL_DAYS", 7))


def generate(ttl_days=None, *, now=None):
    """Return a fresh (token, expires_at) pair."""
    ttl_days = default_ttl_days() if ttl_days is None else ttl_days
    try:
        ttl_days = float(ttl_days)
    except (TypeError, ValueError):
        raise ValidationError("ttl_days must be a number", details={"ttl_days": "invalid"}) from None
    if ttl_days <= 0:
        raise ValidationError("ttl_days must be greater than zero", details={"ttl_days": "must be > 0"})
    now = now or datetime.now(timezone.utc)
    return secrets.token_urlsafe(TOKEN_BYTES), now + timedelta(days=ttl_days)


def public_url(conference) -> str:
    base = current_app.config.get("PUBLIC_BASE_URL", "").rstrip("/")
    return f"{base}/conference/{conference.link_token}"


def regenerate(conference, ttl_days=None, *, actor="system"):
    """
    Replace the conference's token and expiry.

    The old token stops resolving as soon as this commits. Expiry alert keys
    are cleared so the new link gets its own warning/expired alerts.
    """
    from migconf.services.notification_engine import clear_link_keys

    token, expires_at = generate(ttl_days)
    conference.link_token = token
    conference.link_expires_at = expires_at
    clear_link_keys(conference.id)
    write_audit(
        entity_type="conference",
        entity_id=conference.id,
        action="conference.link_regenerate",
        actor=actor,
        conference_id=conference.id,
        diff={"link_expires_at": expires_at.isoformat()},
    )
    db.session.commit()
    logger.info("Link regenerated for conference id=%s (expires %s)", conference.id, expires_at.isoformat())
    return token, expires_at


def is_expired(conference, *, now=None) -> bool:
    now = now or datetime.now(timezone.utc)
    return ensure_utc(conference.link_expires_at) <= now


def resolve(token, *, now=None):
    """Return the conference the token opens, or raise."""
    if not token:
        raise LinkNotFoundError()
    conference = db.session.execute(
        select(Conference).where(Conference.link_token == token)
    ).scalar_one_or_none()
    if conference is None:
        raise LinkNotFoundError()
    if is_expired(conference, now=now):
        raise LinkExpiredError(conference.id)
    return conference
