"""
Migration Conference Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of operator and client actions.
"""

import json
from datetime import UTC, datetime

from migconf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"template", "connection", "conference", "conference_item"}

AUDIT_ACTIONS = {
    # Template
    "template.create",
    "template.update",
    "template.delete",
    "template.import",
    # Conference
    "conference.create",
    "conference.delete",
    "conference.link_regenerate",
    "conference.inputs_update",
    "conference.status_change",
    # Item
    "item.respond",
    "item.clear_response",
    # Connection
    "connection.create",
    "connection.update",
    "connection.delete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action. ``diff_json`` carries the old→new snapshot of the
    fields the action touched.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    conference_id = db.Column(db.Integer, nullable=True, index=True,
                              comment="Owning conference, kept after the conference is deleted")

    entity_type = db.Column(db.String(30), nullable=False,
                            comment="template | connection | conference | conference_item")
    entity_id = db.Column(db.String(60), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conference_id": self.conference_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    conference_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.
    """
    log = AuditLog(
        conference_id=conference_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
