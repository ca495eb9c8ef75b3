"""
Conference — Service Layer.

Business logic for:
    - Instantiation:    template snapshot + stores → expanded items + access link
    - Expected inputs:  validated binding-key → value map
    - Item operations:  execute / respond / clear, followed by status side effects
    - Link operations:  regenerate (optionally emailing the new link)
    - Emails:           link / reminder sends, history listing
    - Stats:            conference counts by status for the dashboard

Side effects after a change (completion email, notification sweep) are
best-effort: they run after the state change is committed and never undo it.
"""

import logging
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select, update

from migconf.core.exceptions import NotFoundError, ValidationError
from migconf.models import db
from migconf.models.audit import write_audit
from migconf.models.conference import (
    CONFERENCE_STATUSES,
    Conference,
    ConferenceItem,
    Store,
    build_binding_key,
)
from migconf.models.connection import DbConnection
from migconf.models.notification import Notification
from migconf.services import access_link, item_lifecycle, notification_engine
from migconf.services.conference_status import is_terminal
from migconf.services.email_service import EmailService
from migconf.services.expansion import expand
from migconf.services.template_service import get_template
from migconf.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_conference(conference_id):
    conference = db.session.get(Conference, conference_id)
    if not conference:
        raise NotFoundError(resource="Conference", resource_id=conference_id)
    return conference


def list_conferences(status=None, search=None):
    stmt = select(Conference).order_by(Conference.created_at.desc(), Conference.id.desc())
    if status:
        stmt = stmt.where(Conference.status == status)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(Conference.name.ilike(like) | Conference.client_name.ilike(like))
    return stmt


def stats():
    rows = db.session.execute(
        select(Conference.status, func.count(Conference.id)).group_by(Conference.status)
    ).all()
    by_status = {s: 0 for s in sorted(CONFERENCE_STATUSES)}
    by_status.update({status: count for status, count in rows})
    return {"total": sum(by_status.values()), "by_status": by_status}


# ── Expected inputs ──────────────────────────────────────────────────────────


def allowed_input_keys(conference):
    """Binding key → input declaration for every value this conference accepts."""
    keys = {}
    for decl in conference.snapshot_inputs():
        if decl.get("scope") == "per_store":
            for store in conference.stores:
                keys[build_binding_key(decl["key"], store.store_id)] = decl
        else:
            keys[decl["key"]] = decl
    return keys


def _clean_input_values(conference, values):
    if not isinstance(values, dict):
        raise ValidationError("expected_input_values must be an object")
    allowed = allowed_input_keys(conference)
    errors = {}
    cleaned = {}
    for key, value in values.items():
        decl = allowed.get(key)
        if decl is None:
            errors[key] = "unknown expected input"
            continue
        if value is None or (isinstance(value, str) and not value.strip()):
            cleaned[key] = None
            continue
        if decl.get("type") in ("number", "currency"):
            if isinstance(value, bool):
                errors[key] = "must be numeric"
                continue
            try:
                number = Decimal(str(value).strip())
            except InvalidOperation:
                errors[key] = "must be numeric"
                continue
            if not number.is_finite():
                errors[key] = "must be numeric"
                continue
            cleaned[key] = str(value).strip() if isinstance(value, str) else value
        else:
            cleaned[key] = str(value)
    if errors:
        raise ValidationError("Invalid expected input values", details=errors)
    return cleaned


def missing_required_inputs(conference):
    values = conference.expected_input_values or {}
    return sorted(
        key for key, decl in allowed_input_keys(conference).items()
        if decl.get("required") and values.get(key) in (None, "")
    )


def update_expected_inputs(conference, values, *, actor="system"):
    cleaned = _clean_input_values(conference, values)
    merged = dict(conference.expected_input_values or {})
    merged.update(cleaned)
    conference.expected_input_values = {k: v for k, v in merged.items() if v is not None}
    write_audit(entity_type="conference", entity_id=conference.id, action="conference.inputs_update",
                actor=actor, conference_id=conference.id, diff={"keys": sorted(cleaned)})
    db.session.commit()
    return conference


# ── Instantiation ────────────────────────────────────────────────────────────


def _required(data, field, errors):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        errors[field] = "required"
        return None
    return value.strip() if isinstance(value, str) else value


def create_conference(data, *, created_by="system"):
    """
    Instantiate a template for a client.

    The template is snapshotted, its items expanded over the stores and a
    fresh access link generated. Optionally emails the link right away.
    """
    if not isinstance(data, dict):
        raise ValidationError("Conference payload must be an object")
    errors = {}
    name = _required(data, "name", errors)
    client_name = _required(data, "client_name", errors)
    client_email = _required(data, "client_email", errors)
    template_id = _required(data, "template_id", errors)
    connection_id = _required(data, "connection_id", errors)
    if client_email:
        try:
            client_email = validate_email(client_email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            errors["client_email"] = str(exc)

    stores = data.get("stores") or []
    seen = set()
    for idx, store in enumerate(stores):
        code = str((store or {}).get("store_id") or "").strip()
        if not code:
            errors[f"stores[{idx}].store_id"] = "required"
        elif code in seen:
            errors[f"stores[{idx}].store_id"] = f"duplicate store '{code}'"
        seen.add(code)

    period_start = parse_date(data.get("period_start"))
    period_end = parse_date(data.get("period_end"))
    if data.get("period_start") and not period_start:
        errors["period_start"] = "invalid date"
    if data.get("period_end") and not period_end:
        errors["period_end"] = "invalid date"
    if period_start and period_end and period_end < period_start:
        errors["period_end"] = "must not be before period_start"
    if errors:
        raise ValidationError("Invalid conference", details=errors)

    template = get_template(template_id)
    connection = db.session.get(DbConnection, connection_id)
    if not connection:
        raise NotFoundError(resource="DbConnection", resource_id=connection_id)

    snapshot = template.to_dict(include_children=True)
    if not stores and any(i["scope"] == "per_store" for s in snapshot["sections"] for i in s["items"]):
        raise ValidationError("Template has per-store items; at least one store is required",
                              details={"stores": "required"})

    token, expires_at = access_link.generate(data.get("ttl_days"))
    conference = Conference(
        name=name,
        client_name=client_name,
        client_email=client_email,
        template_id=template.id,
        template_version=template.version,
        template_snapshot=snapshot,
        connection_id=connection.id,
        status="pending",
        expected_input_values={},
        period_start=period_start,
        period_end=period_end,
        link_token=token,
        link_expires_at=expires_at,
        created_by=created_by,
    )
    for store in stores:
        conference.stores.append(Store(store_id=str(store["store_id"]).strip(),
                                       name=(store.get("name") or str(store["store_id"])).strip()))
    db.session.add(conference)
    db.session.flush()

    by_code = {s.store_id: s for s in conference.stores}
    for spec in expand(snapshot, conference.stores):
        store = by_code.get(spec["store_code"])
        conference.items.append(ConferenceItem(
            item_key=spec["item_key"],
            template_item_id=spec["template_item_id"],
            conference_store_id=store.id if store else None,
            store=store,
            status=spec["status"],
        ))

    conference.expected_input_values = {
        k: v for k, v in _clean_input_values(conference, data.get("expected_input_values") or {}).items()
        if v is not None
    }
    write_audit(entity_type="conference", entity_id=conference.id, action="conference.create",
                actor=created_by, conference_id=conference.id,
                diff={"template_id": template.id, "template_version": template.version,
                      "items": len(conference.items), "stores": len(conference.stores)})
    db.session.commit()
    logger.info("Conference id=%s created from template id=%s v%s with %d item(s)",
                conference.id, template.id, template.version, len(conference.items))

    if data.get("send_email"):
        send_link_email(conference)
    notification_engine.sweep_safely()
    return conference


def delete_conference(conference, *, actor="system"):
    conference_id = conference.id
    notification_engine.clear_conference_keys(conference_id)
    db.session.execute(
        update(Notification)
        .where(Notification.conference_id == conference_id)
        .values(conference_id=None)
    )
    write_audit(entity_type="conference", entity_id=conference_id, action="conference.delete",
                actor=actor, conference_id=conference_id, diff={"name": conference.name})
    db.session.delete(conference)
    db.session.commit()
    item_lifecycle.forget_locks(conference_id)
    logger.info("Conference id=%s deleted by %s", conference_id, actor)
    notification_engine.sweep_safely()


# ── Item operations ──────────────────────────────────────────────────────────


def _after_status_change(conference, old_status):
    """Best-effort side effects once an item change is committed."""
    if conference.status != old_status:
        write_audit(entity_type="conference", entity_id=conference.id, action="conference.status_change",
                    conference_id=conference.id, diff={"status": {"old": old_status, "new": conference.status}})
        db.session.commit()
        if is_terminal(conference.status) and not is_terminal(old_status):
            try:
                EmailService.send_conference_email(conference, "completion")
            except Exception:
                db.session.rollback()
                logger.exception("Completion email failed for conference id=%s", conference.id)
    notification_engine.sweep_safely()


def execute_item(conference, item_key, *, actor="system", runner=None):
    old_status = conference.status
    item = item_lifecycle.execute_item(conference, item_key, runner=runner, actor=actor)
    _after_status_change(conference, old_status)
    return item


def execute_all(conference, *, actor="system", runner=None, only_pending=False):
    """Execute every item (or every pending item) in order; returns the items."""
    old_status = conference.status
    keys = [i.item_key for i in conference.items if not only_pending or i.status == "pending"]
    executed = [item_lifecycle.execute_item(conference, key, runner=runner, actor=actor) for key in keys]
    _after_status_change(conference, old_status)
    return executed


def respond_item(conference, item_key, response, *, observation=None, responded_by=None):
    old_status = conference.status
    item = item_lifecycle.respond_item(conference, item_key, response,
                                       observation=observation, responded_by=responded_by)
    _after_status_change(conference, old_status)
    return item


def clear_item_response(conference, item_key, *, actor=None):
    old_status = conference.status
    item = item_lifecycle.clear_response(conference, item_key, actor=actor)
    _after_status_change(conference, old_status)
    return item


# ── Links & emails ───────────────────────────────────────────────────────────


def regenerate_link(conference, *, ttl_days=None, send_email=False, actor="system"):
    access_link.regenerate(conference, ttl_days, actor=actor)
    email = None
    if send_email:
        email = EmailService.send_conference_email(conference, "new_link")
    notification_engine.sweep_safely()
    return email


def send_link_email(conference):
    result = EmailService.send_conference_email(conference, "conference_link")
    notification_engine.sweep_safely()
    return result


def send_reminder_email(conference):
    result = EmailService.send_conference_email(conference, "reminder")
    notification_engine.sweep_safely()
    return result


SENDERS = {
    "conference_link": send_link_email,
    "reminder": send_reminder_email,
}
